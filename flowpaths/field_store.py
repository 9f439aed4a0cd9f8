import os
import re
import json
import gzip
import logging
import threading
from typing import Dict, List, Mapping, Optional, Sequence, Type

import numpy as np
import requests
import xarray as xr

from .errors import ConfigurationError, DataUnavailable, FlowPathError
from .models import CaseStudy, Stratum

logger = logging.getLogger(__name__)

FIELD_NAMES = ("densities", "u_speeds", "v_speeds", "speeds")
DIMS = ("segment", "strata", "radar")


# ---------------------------
# Validation
# ---------------------------

def validate_field_shapes(arrays: Mapping[str, np.ndarray],
                          segment_count: Optional[int],
                          strata_count: int,
                          radar_count: int,
                          error: Type[FlowPathError] = ConfigurationError) -> None:
    """
    Checks the [segment][strata][radar] alignment of the four parallel fields.
    segment_count=None accepts any segment length as long as all fields agree.
    """
    for name in FIELD_NAMES:
        if name not in arrays:
            raise error(f"Missing field '{name}'")
        a = arrays[name]
        if a.ndim != 3:
            raise error(f"{name} has {a.ndim} dimensions, expected 3 (segment, strata, radar)")
        if segment_count is None:
            segment_count = a.shape[0]
        if a.shape[0] != segment_count:
            raise error(f"{name} segment count ({a.shape[0]}) != {segment_count}")
        if a.shape[1] != strata_count:
            raise error(f"{name} strata count ({a.shape[1]}) != {strata_count}")
        if a.shape[2] != radar_count:
            raise error(f"{name} radar count ({a.shape[2]}) != {radar_count}")


def read_only(a: np.ndarray) -> np.ndarray:
    a.flags.writeable = False
    return a


# ---------------------------
# Data model
# ---------------------------

class SegmentedField:
    """
    The density, u-speed, v-speed and speed time series of one strata option,
    held as an xarray.Dataset with dims (segment, strata, radar).
    The backing arrays are private copies marked read-only.
    """

    def __init__(self, dataset: xr.Dataset, strata_option_index: int):
        arrays = {}
        for name in FIELD_NAMES:
            if name not in dataset:
                raise ConfigurationError(f"Missing field '{name}'")
            arrays[name] = read_only(np.array(dataset[name].transpose(*DIMS).values, dtype=float))

        self.strata_option_index = strata_option_index
        self._arrays: Dict[str, np.ndarray] = arrays
        self.dataset = xr.Dataset(
            {name: (DIMS, a) for name, a in arrays.items()},
            coords={k: v for k, v in dataset.coords.items() if set(v.dims) <= {"strata", "radar"}},
        )
        validate_field_shapes(arrays, None, self.strata_count, self.radar_count)
        self._zero = read_only(np.zeros((self.strata_count, self.radar_count)))

    @classmethod
    def from_arrays(cls, arrays: Mapping[str, np.ndarray], strata_option: Sequence[Stratum],
                    radar_ids: Sequence[str], strata_option_index: int = 0) -> "SegmentedField":
        arrays = {name: np.asarray(arrays[name], dtype=float) for name in FIELD_NAMES if name in arrays}
        validate_field_shapes(arrays, None, len(strata_option), len(radar_ids))
        ds = xr.Dataset(
            {name: (DIMS, a) for name, a in arrays.items()},
            coords={
                "radar": list(radar_ids),
                "strata_min": ("strata", [float(s[0]) for s in strata_option]),
                "strata_max": ("strata", [float(s[1]) for s in strata_option]),
            },
        )
        return cls(ds, strata_option_index)

    @property
    def segment_count(self) -> int:
        return self.dataset.sizes["segment"]

    @property
    def strata_count(self) -> int:
        return self.dataset.sizes["strata"]

    @property
    def radar_count(self) -> int:
        return self.dataset.sizes["radar"]

    def array(self, name: str) -> np.ndarray:
        return self._arrays[name]

    def zero_segment(self) -> np.ndarray:
        """Shared read-only (strata, radar) zero record used for padding."""
        return self._zero


# ---------------------------
# Persisted record parsing
# ---------------------------

def _normalize_key(k: str) -> Optional[str]:
    kk = re.sub(r"[\s_\-]", "", k.lower())
    if kk in ("densities", "density", "den", "dens"):
        return "densities"
    if kk in ("uspeeds", "uspeed", "u", "uspd"):
        return "u_speeds"
    if kk in ("vspeeds", "vspeed", "v", "vspd"):
        return "v_speeds"
    if kk in ("speeds", "speed", "spd"):
        return "speeds"
    return None


def _to_array(values, name: str) -> np.ndarray:
    try:
        # null -> NaN
        return np.array(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} is not a regular [segment][strata][radar] array: {e}") from e


def parse_field_record(obj: dict, case_study: CaseStudy, strata_option_index: int) -> SegmentedField:
    """
    Accepts either
    {
      "meta": {"segmentCount": 72, "strataOption": [[200, 1600], ...], "radars": ["id", ...]},
      "fields": {"densities": [...], "uSpeeds": [...], "vSpeeds": [...], "speeds": [...]}
    }
    or the flat layout with the four field arrays (plus "strataSizes") at the top level.
    Radar ids listed in meta are mapped onto the case study's radar indices.
    """
    if not isinstance(obj, dict):
        raise ConfigurationError("Segmented field record must be a JSON object")
    meta = obj.get("meta", {})
    fieldsj = obj.get("fields", obj)

    arrays = {}
    for k, v in fieldsj.items():
        kk = _normalize_key(k)
        if kk is not None:
            arrays[kk] = _to_array(v, k)

    strata_option = case_study.strata_option(strata_option_index)
    if "strataOption" in meta:
        persisted = [(float(s[0]), float(s[1])) for s in meta["strataOption"]]
        if persisted != [tuple(s) for s in strata_option]:
            raise ConfigurationError(
                f"Persisted strata option {persisted} does not match case study option "
                f"{strata_option_index}: {strata_option}")
    elif "strataSizes" in obj:
        sizes = [float(s) for s in obj["strataSizes"]]
        expected = list(case_study.strata_heights_km(strata_option_index))
        if not np.allclose(sizes, expected):
            raise ConfigurationError(f"Persisted strata sizes {sizes} != {expected}")

    segment_count = meta.get("segmentCount")
    validate_field_shapes(arrays, segment_count, len(strata_option),
                          len(meta.get("radars", case_study.radars)))

    radar_ids = [str(r) for r in meta.get("radars", [r.id for r in case_study.radars])]
    if sorted(radar_ids) != sorted(case_study.radar_indices):
        raise ConfigurationError(f"Persisted radars {radar_ids} do not match the case study radars")

    field = SegmentedField.from_arrays(arrays, strata_option, radar_ids, strata_option_index)
    if radar_ids != [r.id for r in case_study.radars]:
        # reorder the radar axis by case-study index
        ds = field.dataset.sel(radar=[r.id for r in case_study.radars])
        field = SegmentedField(ds, strata_option_index)

    if field.segment_count != case_study.segment_count:
        logger.warning(f"Strata option {strata_option_index}: {field.segment_count} stored segments, "
                       f"case study spans {case_study.segment_count}")
    return field


# ---------------------------
# Sources
# ---------------------------

class DirectorySource:
    """Reads data-<index>.json or data-<index>.json.gz from a folder."""

    def __init__(self, folder: str):
        self.folder = folder

    def fetch(self, strata_option_index: int) -> dict:
        base = os.path.join(self.folder, f"data-{strata_option_index}.json")
        if os.path.exists(base):
            with open(base, "r", encoding="utf-8") as f:
                return json.load(f)
        if os.path.exists(base + ".gz"):
            with gzip.open(base + ".gz", "rt", encoding="utf-8") as f:
                return json.load(f)
        raise DataUnavailable(f"No segmented field file for strata option {strata_option_index} in {self.folder}")


class HttpSource:
    """Fetches <base_url>/data-<index>.json."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 60):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch(self, strata_option_index: int) -> dict:
        url = f"{self.base_url}/data-{strata_option_index}.json"
        r = self.session.get(url, timeout=self.timeout)
        if r.status_code == 404:
            raise DataUnavailable(f"No segmented field file for strata option {strata_option_index}: {url}")
        r.raise_for_status()
        return r.json()


# ---------------------------
# Store
# ---------------------------

class SegmentedFieldStore:
    """
    Lazily loads and caches one SegmentedField per strata option index.
    A field is parsed and validated completely before it becomes visible.
    """

    def __init__(self, source, case_study: CaseStudy):
        self.source = source
        self.case_study = case_study
        self._mem: Dict[int, SegmentedField] = {}
        self._lock = threading.Lock()

    def is_loaded(self, strata_option_index: int) -> bool:
        with self._lock:
            return strata_option_index in self._mem

    def load(self, strata_option_index: int) -> SegmentedField:
        with self._lock:
            field = self._mem.get(strata_option_index)
        if field is not None:
            return field

        # validates the index before touching the source
        self.case_study.strata_option(strata_option_index)
        logger.info(f"Loading segmented fields for strata option {strata_option_index}")
        obj = self.source.fetch(strata_option_index)
        field = parse_field_record(obj, self.case_study, strata_option_index)

        with self._lock:
            # another thread may have won the race; keep the first
            field = self._mem.setdefault(strata_option_index, field)
        logger.debug(f"Strata option {strata_option_index}: {field.segment_count} segments, "
                     f"{field.strata_count} strata, {field.radar_count} radars")
        return field

    def put(self, field: SegmentedField) -> None:
        with self._lock:
            self._mem[field.strata_option_index] = field

    def invalidate(self, strata_option_index: Optional[int] = None) -> None:
        with self._lock:
            if strata_option_index is None:
                self._mem.clear()
            else:
                self._mem.pop(strata_option_index, None)

    def loaded_indices(self) -> List[int]:
        with self._lock:
            return sorted(self._mem)
