import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Tuple, Union

import numpy as np

from .errors import FOCUS_OUT_OF_RANGE, Condition, ConfigurationError, ConsistencyError
from .field_store import FIELD_NAMES, SegmentedField, SegmentedFieldStore, read_only, validate_field_shapes
from .models import CaseStudy, FocusWindow, Stratum

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FocusData:
    """
    The materialized slice of a SegmentedField for one focus window.
    Field arrays are (segment_count + 1, strata, radar) and read-only; the
    trailing segment feeds the second integration stage of the last step.
    """
    case_study: CaseStudy
    focus: FocusWindow
    strata_option: Tuple[Stratum, ...]
    segment_count: int
    i_from: int
    densities: np.ndarray
    u_speeds: np.ndarray
    v_speeds: np.ndarray
    speeds: np.ndarray
    av_densities: np.ndarray    # (strata, radar), birds per km²
    prepended: int = 0
    appended: int = 0
    warnings: Tuple[Condition, ...] = ()

    @property
    def strata_count(self) -> int:
        return len(self.strata_option)

    @property
    def radar_count(self) -> int:
        return self.case_study.radar_count

    def strata_size(self, strata: int) -> float:
        """Height of a strata in km."""
        lo, hi = self.strata_option[strata]
        return (hi - lo) / 1000.0

    def segment_start(self, i: int) -> datetime:
        return self.case_study.data_from + (self.i_from + i) * self.case_study.segment_delta

    @property
    def segment_seconds(self) -> float:
        return self.case_study.segment_size * 60.0

    @property
    def is_empty(self) -> bool:
        return not np.any(self.av_densities > 0)


def _average_densities(densities: np.ndarray, speeds: np.ndarray, strata_sizes: np.ndarray) -> np.ndarray:
    # a segment is active where both density and speed are positive
    active = (densities > 0) & (speeds > 0)
    cnt = active.sum(axis=0)
    total = np.where(active, densities, 0.0).sum(axis=0)
    av = np.zeros(cnt.shape, dtype=float)
    np.divide(total, cnt, out=av, where=cnt > 0)
    return av * strata_sizes[:, None]


def extract_focus_data(source: Union[SegmentedFieldStore, SegmentedField],
                       focus: FocusWindow,
                       case_study: CaseStudy) -> FocusData:
    """
    Slices the segmented fields for the given focus.

    Segments before or after the stored range are padded with the field's
    shared zero record so that the result always holds segment_count + 1
    entries. A focus that does not intersect the stored range yields a fully
    padded FocusData carrying a focus_out_of_range warning.
    """
    focus = focus.clone()
    seg_n = focus.segment_count(case_study)
    strata_option = tuple(focus.strata_option(case_study))
    strata_n = len(strata_option)
    radar_n = case_study.radar_count

    if isinstance(source, SegmentedField):
        field = source
    else:
        field = source.load(focus.strata_option_index)
    if field.strata_option_index != focus.strata_option_index:
        raise ConfigurationError(f"Field holds strata option {field.strata_option_index}, "
                                 f"focus selects {focus.strata_option_index}")
    validate_field_shapes({name: field.array(name) for name in FIELD_NAMES},
                          None, strata_n, radar_n)

    stored = field.segment_count
    i_from = (focus.start - case_study.data_from) // case_study.segment_delta
    i_till = i_from + seg_n + 1
    warnings = []

    if i_from >= stored or i_till < 0:
        msg = (f"The focus {focus.start.isoformat()} .. {focus.till.isoformat()} does not intersect "
               f"the available data ({stored} segments from {case_study.data_from.isoformat()})")
        logger.warning(msg)
        warnings.append(Condition(FOCUS_OUT_OF_RANGE, msg))
        lo = hi = 0
        prepend, append = 0, seg_n + 1
    else:
        prepend = max(0, -i_from)
        append = max(0, i_till - stored)
        lo, hi = max(i_from, 0), min(i_till, stored)

    zero = field.zero_segment()
    arrays = {}
    for name in FIELD_NAMES:
        parts = []
        if prepend:
            parts.append(np.broadcast_to(zero, (prepend,) + zero.shape))
        parts.append(field.dataset[name].isel(segment=slice(lo, hi)).values)
        if append:
            parts.append(np.broadcast_to(zero, (append,) + zero.shape))
        # concatenate always allocates, so the result never aliases the store
        arrays[name] = read_only(np.concatenate(parts, axis=0))

    if prepend or append:
        logger.debug(f"Focus {focus.start.isoformat()}: prepended {prepend}, appended {append} empty segments")

    strata_sizes = np.array([(hi_m - lo_m) / 1000.0 for lo_m, hi_m in strata_option])
    av_densities = read_only(_average_densities(arrays["densities"], arrays["speeds"], strata_sizes))

    validate_field_shapes(arrays, seg_n + 1, strata_n, radar_n, error=ConsistencyError)
    if av_densities.shape != (strata_n, radar_n):
        raise ConsistencyError(f"av_densities shape {av_densities.shape} != {(strata_n, radar_n)}")

    return FocusData(
        case_study=case_study,
        focus=focus,
        strata_option=strata_option,
        segment_count=seg_n,
        i_from=i_from,
        densities=arrays["densities"],
        u_speeds=arrays["u_speeds"],
        v_speeds=arrays["v_speeds"],
        speeds=arrays["speeds"],
        av_densities=av_densities,
        prepended=prepend,
        appended=append,
        warnings=tuple(warnings),
    )
