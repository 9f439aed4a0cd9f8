import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .geo import destination, dist_angle, distance_km
from .models import CaseStudy

logger = logging.getLogger(__name__)

Bounds = Tuple[float, float, float, float]  # (lon_min, lat_min, lon_max, lat_max)


@dataclass(frozen=True)
class AnchorPoint:
    lon: float
    lat: float
    radar_index: int  # nearest radar

    @property
    def location(self) -> Tuple[float, float]:
        return self.lon, self.lat


def radar_bounds(case_study: CaseStudy, margin_km: float) -> Bounds:
    """Extent of the radars grown by margin_km on every side."""
    m = dist_angle(margin_km)
    max_abs_lat = max(abs(lat) for lat in case_study.radar_lats)
    m_lon = m / max(math.cos(math.radians(min(max_abs_lat + m, 89.0))), 1e-6)
    return (float(case_study.radar_lons.min()) - m_lon, float(case_study.radar_lats.min()) - m,
            float(case_study.radar_lons.max()) + m_lon, float(case_study.radar_lats.max()) + m)


def build_anchors(case_study: CaseStudy,
                  radius_km: float = 75.0,
                  interval_km: Optional[float] = None,
                  bounds: Optional[Bounds] = None) -> List[AnchorPoint]:
    """
    Regular lon/lat lattice with a spacing of interval_km (case study anchor
    interval by default) measured at the map centre. Only lattice points
    within radius_km of a radar are kept; each point appears once.
    """
    interval_km = interval_km or case_study.anchor_interval
    if interval_km <= 0:
        raise ValueError(f"interval_km must be positive, got {interval_km}")
    if bounds is None:
        bounds = radar_bounds(case_study, radius_km)
    lon_min, lat_min, lon_max, lat_max = bounds

    clon, clat = case_study.map_center
    dlon = destination(clon, clat, math.pi / 2, interval_km)[0] - clon
    dlat = destination(clon, clat, 0.0, interval_km)[1] - clat

    anchors = []
    ni = int(math.floor((lon_max - lon_min) / dlon)) + 1
    nj = int(math.floor((lat_max - lat_min) / dlat)) + 1
    for i in range(ni):
        lon = lon_min + i * dlon
        for j in range(nj):
            lat = lat_max - j * dlat
            dists = [distance_km(r.longitude, r.latitude, lon, lat) for r in case_study.radars]
            nearest = min(range(len(dists)), key=dists.__getitem__)
            if dists[nearest] <= radius_km:
                anchors.append(AnchorPoint(lon=lon, lat=lat, radar_index=nearest))

    logger.info(f"Built {len(anchors)} anchors ({interval_km} km lattice, {radius_km} km radar radius)")
    return anchors
