import math
from typing import List, Sequence, Tuple

EARTH_R_KM = 6371.0


# ---------------------------
# Helpers
# ---------------------------

def lon_wrap(lon: float) -> float:
    # keep [-180,180)
    return (lon + 180.0) % 360.0 - 180.0

def dist_angle(distance_km: float) -> float:
    """Angle in degrees subtended by an arc of distance_km on the earth's surface."""
    return math.degrees(distance_km / EARTH_R_KM)

def distance_km(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle (haversine) distance."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2.0 * EARTH_R_KM * math.asin(min(1.0, math.sqrt(h)))

def destination(lon: float, lat: float, bearing: float, dist_km: float) -> Tuple[float, float]:
    """
    Location reached from (lon, lat) travelling dist_km along a great circle.
    bearing is in radians, clockwise from north.
    """
    dr = dist_km / EARTH_R_KM
    lat1 = math.radians(lat)
    lon1 = math.radians(lon)
    lat2 = math.asin(math.sin(lat1) * math.cos(dr) +
                     math.cos(lat1) * math.sin(dr) * math.cos(bearing))
    lon2 = lon1 + math.atan2(math.sin(bearing) * math.sin(dr) * math.cos(lat1),
                             math.cos(dr) - math.sin(lat1) * math.sin(lat2))
    return lon_wrap(math.degrees(lon2)), math.degrees(lat2)

def minimize_angle_delta(angles: Sequence[float]) -> List[float]:
    """
    Unwraps a series of angles (radians) so that subsequent values never
    differ by more than pi.
    """
    out = list(angles)
    for i in range(1, len(out)):
        a = out[i]
        while a > out[i - 1] + math.pi:
            a -= 2 * math.pi
        while a < out[i - 1] - math.pi:
            a += 2 * math.pi
        out[i] = a
    return out


# ---------------------------
# Displacement models
# ---------------------------

class GeodesicDisplacement:
    """
    Positions are (lon, lat) in degrees. A velocity (u east, v north) in m/s
    held for dt_s seconds moves the position along a great circle.
    """

    def advance(self, x: float, y: float, u: float, v: float, dt_s: float) -> Tuple[float, float]:
        dist = math.hypot(u, v) * dt_s / 1000.0
        if dist == 0.0:
            return x, y
        return destination(x, y, math.atan2(u, v), dist)

    def distance_km(self, x1: float, y1: float, x2: float, y2: float) -> float:
        return distance_km(x1, y1, x2, y2)


class PlanarDisplacement:
    """
    Positions are projected map coordinates; one unit equals meters_per_unit
    meters. Advancing is exactly p + (u, v) * dt.
    """

    def __init__(self, meters_per_unit: float = 1.0):
        if meters_per_unit <= 0:
            raise ValueError(f"meters_per_unit must be positive, got {meters_per_unit}")
        self.meters_per_unit = meters_per_unit

    def advance(self, x: float, y: float, u: float, v: float, dt_s: float) -> Tuple[float, float]:
        return (x + u * dt_s / self.meters_per_unit,
                y + v * dt_s / self.meters_per_unit)

    def distance_km(self, x1: float, y1: float, x2: float, y2: float) -> float:
        return math.hypot(x2 - x1, y2 - y1) * self.meters_per_unit / 1000.0
