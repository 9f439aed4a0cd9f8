from dataclasses import dataclass


class FlowPathError(Exception):
    """Base class for all flowpaths errors."""


# ---------------------------
# Fatal
# ---------------------------

class ConfigurationError(FlowPathError, ValueError):
    """Upstream data or metadata is malformed (non-integer counts, shape mismatch)."""


class ConsistencyError(FlowPathError, RuntimeError):
    """An internal postcondition failed. This is a bug, not a data problem."""


class DataUnavailable(FlowPathError, LookupError):
    """No persisted segmented-field file exists for a strata option."""


# ---------------------------
# Recoverable
# ---------------------------

class InterpolationError(FlowPathError):
    """A field value could not be estimated at the requested location."""


class EmptySources(InterpolationError):
    """No usable training samples for a segment/strata."""


class CoincidentPoint(InterpolationError):
    """
    The query point equals a training point, so IDW weights are undefined.
    Callers use `value` (the coincident training value) directly.
    """

    def __init__(self, index: int, value: float):
        super().__init__(f"query point coincides with training point {index}")
        self.index = index
        self.value = value


FOCUS_OUT_OF_RANGE = "focus_out_of_range"


@dataclass(frozen=True)
class Condition:
    """Out-of-band notice of a recoverable condition."""
    kind: str
    message: str
