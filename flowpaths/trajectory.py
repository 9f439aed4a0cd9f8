import math
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .anchors import AnchorPoint
from .config import PathConfig
from .errors import ConfigurationError, EmptySources, InterpolationError
from .focus_data import FocusData
from .geo import GeodesicDisplacement, minimize_angle_delta

logger = logging.getLogger(__name__)

# relative slack on the migrants / migrants_per_path ratio before flooring
LINE_COUNT_TOLERANCE = 1e-9


class PathState(str, Enum):
    SEEDED = "seeded"
    ADVECTING = "advecting"
    COMPLETED = "completed"
    TERMINATED = "terminated"
    SUPPRESSED = "suppressed"


class PathPoint(NamedTuple):
    x: float            # lon, or projected x for planar displacement
    y: float
    segment: int        # focus-relative segment index
    density: float      # interpolated density at this point (birds/km³)
    angle: float        # heading of the step leaving this point, radians clockwise from north


@dataclass
class Path:
    anchor: AnchorPoint
    strata: int
    state: PathState = PathState.SEEDED
    points: Tuple[PathPoint, ...] = ()
    density_integral: float = 0.0
    migrants: float = 0.0
    line_count: int = 0

    @property
    def coordinates(self) -> List[Tuple[float, float]]:
        return [(p.x, p.y) for p in self.points]


VelocityEstimator = Callable[[float, float], Tuple[float, float]]
DensityEstimator = Callable[[float, float], float]


class PathIntegrator:
    """
    Advects anchors through the interpolated velocity field of one FocusData
    with the midpoint method:

        k1     = v(p_i, segment i)
        p_mid  = p_i + 0.5 * k1 * dt
        k2     = v(p_mid, segment i + 1)
        p_i+1  = p_i + k2 * dt

    while accumulating the density sampled at p_i over the segment.
    Trained estimators are cached per (kind, segment, strata) for the lifetime
    of the integrator, i.e. one compute_paths call.
    """

    def __init__(self, focus_data: FocusData, interpolator,
                 config: Optional[PathConfig] = None, displacement=None):
        self.focus_data = focus_data
        self.interpolator = interpolator
        self.config = config or PathConfig()
        self.displacement = displacement or GeodesicDisplacement()
        self.dt_s = focus_data.segment_seconds
        self.radar_x = focus_data.case_study.radar_lons
        self.radar_y = focus_data.case_study.radar_lats
        self._cache: Dict[Tuple[str, int, int], object] = {}
        self._failed: Dict[Tuple[str, int, int], str] = {}

    # ---------------------------
    # Estimators
    # ---------------------------

    def _train_velocity(self, i: int, strata: int) -> VelocityEstimator:
        fd = self.focus_data
        u = fd.u_speeds[i, strata]
        v = fd.v_speeds[i, strata]
        sp = fd.speeds[i, strata]
        mask = np.isfinite(u) & np.isfinite(v) & np.isfinite(sp) & (sp > 0)
        if not mask.any():
            raise EmptySources(f"No velocity samples in segment {i}, strata {strata}")
        xs, ys = self.radar_x[mask], self.radar_y[mask]
        eu = self.interpolator.train(u[mask], xs, ys)
        ev = self.interpolator.train(v[mask], xs, ys)
        return lambda x, y: (eu(x, y), ev(x, y))

    def _train_density(self, i: int, strata: int) -> DensityEstimator:
        den = self.focus_data.densities[i, strata]
        mask = np.isfinite(den)
        if not mask.any():
            raise EmptySources(f"No density samples in segment {i}, strata {strata}")
        return self.interpolator.train(den[mask], self.radar_x[mask], self.radar_y[mask])

    def _estimator(self, kind: str, i: int, strata: int):
        key = (kind, i, strata)
        if key in self._failed:
            raise InterpolationError(self._failed[key])
        est = self._cache.get(key)
        if est is None:
            train = self._train_velocity if kind == "velocity" else self._train_density
            try:
                est = train(i, strata)
            except InterpolationError as e:
                self._failed[key] = str(e)
                raise
            self._cache[key] = est
        return est

    def velocity(self, x: float, y: float, i: int, strata: int) -> Tuple[float, float]:
        u, v = self._estimator("velocity", i, strata)(x, y)
        return float(u), float(v)

    def density(self, x: float, y: float, i: int, strata: int) -> float:
        return max(0.0, float(self._estimator("density", i, strata)(x, y)))

    # ---------------------------
    # Integration
    # ---------------------------

    def _in_domain(self, x: float, y: float) -> bool:
        radius = self.config.domain_limit_km
        if radius is None:
            return True
        d = min(self.displacement.distance_km(rx, ry, x, y)
                for rx, ry in zip(self.radar_x, self.radar_y))
        return d <= radius

    def integrate(self, anchor: AnchorPoint, strata: int) -> Path:
        fd = self.focus_data
        path = Path(anchor=anchor, strata=strata)
        dt = self.dt_s
        x, y = anchor.lon, anchor.lat
        points: List[PathPoint] = []
        integral = 0.0
        rho = angle = 0.0

        path.state = PathState.ADVECTING
        for i in range(fd.segment_count):
            try:
                u1, v1 = self.velocity(x, y, i, strata)
                rho = self.density(x, y, i, strata)
                xm, ym = self.displacement.advance(x, y, u1, v1, 0.5 * dt)
                u2, v2 = self.velocity(xm, ym, i + 1, strata)
            except InterpolationError as e:
                logger.debug(f"Path at ({anchor.lon:.4f}, {anchor.lat:.4f}) strata {strata} "
                             f"terminated in segment {i}: {e}")
                path.state = PathState.TERMINATED
                break

            x1, y1 = self.displacement.advance(x, y, u2, v2, dt)
            if not (math.isfinite(x1) and math.isfinite(y1)) or not self._in_domain(x1, y1):
                logger.debug(f"Path at ({anchor.lon:.4f}, {anchor.lat:.4f}) strata {strata} "
                             f"left the domain in segment {i}")
                path.state = PathState.TERMINATED
                break

            angle = math.atan2(u2, v2)
            points.append(PathPoint(x, y, i, rho, angle))
            integral += rho * dt
            x, y = x1, y1
        else:
            path.state = PathState.COMPLETED

        # end position carries the last step's density and heading
        points.append(PathPoint(x, y, len(points), rho, angle))

        mpp = fd.focus.migrants_per_path
        if mpp <= 0:
            raise ConfigurationError(f"migrants_per_path must be positive, got {mpp}")
        path.density_integral = integral
        path.migrants = (integral / (fd.segment_count * dt)
                         * fd.strata_size(strata) * fd.case_study.anchor_area)
        path.line_count = int(math.floor(path.migrants / mpp + LINE_COUNT_TOLERANCE))

        if path.line_count == 0:
            path.state = PathState.SUPPRESSED
            path.points = ()
            return path

        angles = minimize_angle_delta([p.angle for p in points])
        path.points = tuple(p._replace(angle=a) for p, a in zip(points, angles))
        return path


def compute_paths(focus_data: FocusData,
                  anchors: Sequence[AnchorPoint],
                  interpolator,
                  config: Optional[PathConfig] = None,
                  displacement=None) -> List[Path]:
    """
    Paths for every anchor and every strata with any recorded density.
    Suppressed paths are left out; the result order is strata-major, then
    anchor order.
    """
    integrator = PathIntegrator(focus_data, interpolator, config, displacement)
    paths = []
    suppressed = terminated = 0
    for strata in range(focus_data.strata_count):
        if not np.any(focus_data.av_densities[strata] > 0):
            logger.debug(f"Strata {strata} has no active segments; skipped")
            continue
        for anchor in anchors:
            path = integrator.integrate(anchor, strata)
            if path.state is PathState.SUPPRESSED:
                suppressed += 1
                continue
            if path.state is PathState.TERMINATED:
                terminated += 1
            paths.append(path)

    logger.info(f"Computed {len(paths)} paths ({terminated} terminated early, {suppressed} suppressed) "
                f"for focus {focus_data.focus.start.isoformat()} +{focus_data.focus.duration}h")
    return paths
