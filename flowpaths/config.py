from dataclasses import dataclass
from typing import Optional, Tuple

@dataclass
class PathConfig:
    radar_anchor_radius_km: float = 75.0     # anchors are seeded within this radius of a radar
    idw_power: float = 2.0
    domain_radius_km: Optional[float] = None # None follows radar_anchor_radius_km
    bounded_domain: bool = True              # False: never terminate paths by distance
    migrants_per_path_options: Tuple[int, ...] = (10000, 25000, 50000, 100000, 250000, 500000)

    @property
    def domain_limit_km(self) -> Optional[float]:
        """Distance from the nearest radar beyond which a path is terminated."""
        if not self.bounded_domain:
            return None
        if self.domain_radius_km is None:
            return self.radar_anchor_radius_km
        return self.domain_radius_km
