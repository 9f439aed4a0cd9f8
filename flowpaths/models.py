import json
import logging
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .utils_time import ensure_utc, parse_iso_z

logger = logging.getLogger(__name__)

Stratum = Tuple[float, float]  # (min altitude, max altitude) in meters


# ---------------------------
# Case study
# ---------------------------

@dataclass(frozen=True)
class Radar:
    id: str
    longitude: float
    latitude: float
    index: int

    @property
    def location(self) -> Tuple[float, float]:
        return self.longitude, self.latitude


@dataclass(eq=False)
class CaseStudy:
    """
    Metadata of one recorded migration case: the radars, the recorded time
    range, its segmentation and the selectable strata options.

    Raises ConfigurationError on construction when the recorded range is not
    a whole number of segments.
    """
    id: str
    radars: List[Radar]
    data_from: datetime
    data_till: datetime
    segment_size: int                        # minutes
    strata_options: List[List[Stratum]]
    anchor_interval: float = 25.0            # km between anchor lattice points
    label: str = ""
    map_center: Optional[Tuple[float, float]] = None
    default_focus_from: Optional[datetime] = None
    default_focus_duration: float = 6.0      # hours
    default_strata_option_index: int = 0
    default_migrants_per_path: float = 25000

    radar_indices: Dict[str, int] = field(init=False, repr=False)
    radar_lons: np.ndarray = field(init=False, repr=False)
    radar_lats: np.ndarray = field(init=False, repr=False)
    segment_count: int = field(init=False)

    def __post_init__(self):
        self.data_from = ensure_utc(self.data_from)
        self.data_till = ensure_utc(self.data_till)
        if self.default_focus_from is None:
            self.default_focus_from = self.data_from
        self.default_focus_from = ensure_utc(self.default_focus_from)

        if not self.radars:
            raise ConfigurationError(f"Case study '{self.id}' has no radars")
        if self.segment_size <= 0:
            raise ConfigurationError(f"segment_size must be positive, got {self.segment_size}")
        if self.data_till <= self.data_from:
            raise ConfigurationError(f"data_till ({self.data_till}) must be after data_from ({self.data_from})")
        if not self.strata_options:
            raise ConfigurationError(f"Case study '{self.id}' has no strata options")
        for i, option in enumerate(self.strata_options):
            if not option:
                raise ConfigurationError(f"strata option {i} is empty")
            for lo, hi in option:
                if hi <= lo:
                    raise ConfigurationError(f"strata option {i} has an empty band [{lo}, {hi}]")

        count = (self.data_till - self.data_from) / self.segment_delta
        if not float(count).is_integer():
            raise ConfigurationError(
                f"Expected an integer segment count for case study '{self.id}', got {count} "
                f"({self.data_from.isoformat()} .. {self.data_till.isoformat()}, "
                f"segment size {self.segment_size} min)")
        self.segment_count = int(count)

        for i, radar in enumerate(self.radars):
            if radar.index != i:
                raise ConfigurationError(f"Radar '{radar.id}' has index {radar.index}, expected {i}")
        self.radar_indices = {r.id: r.index for r in self.radars}
        if len(self.radar_indices) != len(self.radars):
            raise ConfigurationError(f"Duplicate radar ids in case study '{self.id}'")
        self.radar_lons = np.array([r.longitude for r in self.radars], dtype=float)
        self.radar_lats = np.array([r.latitude for r in self.radars], dtype=float)

        if self.map_center is None:
            self.map_center = (float(self.radar_lons.mean()), float(self.radar_lats.mean()))

    @property
    def radar_count(self) -> int:
        return len(self.radars)

    @property
    def segment_delta(self) -> timedelta:
        return timedelta(minutes=self.segment_size)

    @property
    def anchor_area(self) -> float:
        """Surface area (km²) each anchor represents."""
        return self.anchor_interval * self.anchor_interval

    def strata_option(self, index: int) -> List[Stratum]:
        if not 0 <= index < len(self.strata_options):
            raise ConfigurationError(
                f"strata option index {index} out of range [0, {len(self.strata_options)})")
        return self.strata_options[index]

    def strata_heights_km(self, index: int) -> np.ndarray:
        return np.array([(hi - lo) / 1000.0 for lo, hi in self.strata_option(index)], dtype=float)

    def default_focus(self) -> "FocusWindow":
        return FocusWindow(
            start=self.default_focus_from,
            duration=self.default_focus_duration,
            strata_option_index=self.default_strata_option_index,
            migrants_per_path=self.default_migrants_per_path,
        )

    @classmethod
    def from_metadata(cls, meta: dict, case_id: Optional[str] = None) -> "CaseStudy":
        """
        Builds a case study from a metadata record:
        {
          "label": "...",
          "radars": [{"id": "...", "longitude": ..., "latitude": ...}, ...],
          "dataFrom": "...Z", "dataTill": "...Z",
          "segmentSize": 20,
          "strataOptions": [[[200, 1600], [1600, 3000]], ...],
          "anchorInterval": 25,
          "mapCenter": [lon, lat],
          "defaultFocusFrom": "...Z",
          "defaultFocusDuration": 6,
          "defaultStrataOption": 0,
          "defaultMigrantsPerPath": 25000
        }
        """
        try:
            radars = [
                Radar(id=str(r["id"]), longitude=float(r["longitude"]),
                      latitude=float(r["latitude"]), index=i)
                for i, r in enumerate(meta["radars"])
            ]
            strata_options = [
                [(float(s[0]), float(s[1])) for s in option]
                for option in meta["strataOptions"]
            ]
            focus_from = meta.get("defaultFocusFrom", meta.get("focusFrom"))
            center = meta.get("mapCenter")
            return cls(
                id=case_id or str(meta.get("id", "")),
                label=str(meta.get("label", "")),
                radars=radars,
                data_from=parse_iso_z(meta["dataFrom"]),
                data_till=parse_iso_z(meta["dataTill"]),
                segment_size=int(meta["segmentSize"]),
                strata_options=strata_options,
                anchor_interval=float(meta.get("anchorInterval", 25.0)),
                map_center=(float(center[0]), float(center[1])) if center else None,
                default_focus_from=parse_iso_z(focus_from) if focus_from else None,
                default_focus_duration=float(meta.get("defaultFocusDuration", 6.0)),
                default_strata_option_index=int(meta.get("defaultStrataOption", 0)),
                default_migrants_per_path=float(meta.get("defaultMigrantsPerPath", 25000)),
            )
        except (KeyError, TypeError, IndexError) as e:
            raise ConfigurationError(f"Malformed case study metadata: {e!r}") from e


def load_case_study(path: str, case_id: Optional[str] = None) -> CaseStudy:
    """Loads a metadata.json file (or a directory containing one)."""
    p = Path(path)
    if p.is_dir():
        p = p / "metadata.json"
    with p.open("r", encoding="utf-8") as f:
        meta = json.load(f)
    cs = CaseStudy.from_metadata(meta, case_id or p.parent.name)
    logger.info(f"Loaded case study '{cs.id}' ({cs.label}): {cs.radar_count} radars, "
                f"{cs.segment_count} segments of {cs.segment_size} min")
    return cs


# ---------------------------
# Focus
# ---------------------------

@dataclass
class FocusWindow:
    """
    The time range, strata option and path quantization currently viewed.
    Mutated by the UI; clone() it before handing it to an extraction.
    """
    start: datetime
    duration: float               # hours
    strata_option_index: int = 0
    migrants_per_path: float = 25000

    def __post_init__(self):
        self.start = ensure_utc(self.start)

    @property
    def till(self) -> datetime:
        return self.start + timedelta(hours=self.duration)

    def segment_count(self, case_study: CaseStudy) -> int:
        count = self.duration * 60 / case_study.segment_size
        if not float(count).is_integer():
            raise ConfigurationError(
                f"Focus duration of {self.duration} h is not a whole number of "
                f"{case_study.segment_size} min segments")
        return int(count)

    def strata_option(self, case_study: CaseStudy) -> List[Stratum]:
        return case_study.strata_option(self.strata_option_index)

    def strata_count(self, case_study: CaseStudy) -> int:
        return len(self.strata_option(case_study))

    def altitude_range(self, case_study: CaseStudy) -> Tuple[float, float]:
        option = self.strata_option(case_study)
        return option[0][0], option[-1][1]

    def set_start(self, start: datetime) -> None:
        self.start = ensure_utc(start)

    def set_till(self, till: datetime) -> None:
        self.start = ensure_utc(till) - timedelta(hours=self.duration)

    def set_duration(self, duration: float) -> None:
        self.duration = duration

    def constrain(self, case_study: CaseStudy) -> "FocusWindow":
        """Moves the focus so that it falls within the recorded data range."""
        if self.start < case_study.data_from:
            self.set_start(case_study.data_from)
        elif self.till > case_study.data_till:
            self.set_till(case_study.data_till)
        return self

    def clone(self) -> "FocusWindow":
        return dataclasses.replace(self)
