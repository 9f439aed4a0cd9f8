import math
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from flowpaths.anchors import AnchorPoint
from flowpaths.config import PathConfig
from flowpaths.focus_data import extract_focus_data
from flowpaths.geo import PlanarDisplacement, distance_km
from flowpaths.interpolation import IdwInterpolator, KrigingInterpolator
from flowpaths.models import FocusWindow
from flowpaths.trajectory import PathIntegrator, PathState, compute_paths

T0 = datetime(2016, 9, 1, 0, 0, tzinfo=timezone.utc)
DT = 1200.0  # 20 min segments


def _planar_focus(mpp=10.0):
    return FocusWindow(start=T0, duration=1.0, strata_option_index=0, migrants_per_path=mpp)


class CountingIdw(IdwInterpolator):
    def __init__(self):
        super().__init__(power=2.0)
        self.trained = 0

    def train(self, t_values, x_values, y_values):
        self.trained += 1
        return super().train(t_values, x_values, y_values)


def test_constant_field_is_advected_exactly(planar_case_study, make_field):
    fd = extract_focus_data(make_field(planar_case_study, u=3.0, v=4.0), _planar_focus(), planar_case_study)
    anchor = AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(anchor, 0)
    n = fd.segment_count
    assert path.state is PathState.COMPLETED
    assert len(path.points) == n + 1
    end = path.points[-1]
    assert end.x == pytest.approx(2000.0 + n * 3.0 * DT)
    assert end.y == pytest.approx(3000.0 + n * 4.0 * DT)
    for k, p in enumerate(path.points):
        assert p.segment == k
        assert p.x == pytest.approx(2000.0 + k * 3.0 * DT)
        assert p.angle == pytest.approx(math.atan2(3.0, 4.0))


def test_constant_field_geodesic_distance(case_study, make_field, focus):
    fd = extract_focus_data(make_field(case_study, u=3.0, v=4.0), focus, case_study)
    anchor = AnchorPoint(lon=5.0, lat=51.0, radar_index=0)
    path = PathIntegrator(fd, IdwInterpolator()).integrate(anchor, 0)
    end = path.points[-1]
    # 5 m/s for one hour
    assert distance_km(anchor.lon, anchor.lat, end.x, end.y) == pytest.approx(18.0, rel=1e-3)
    assert end.x > anchor.lon and end.y > anchor.lat


def test_threshold_is_inclusive(planar_case_study, make_field):
    # density 1/km³ over a 1 km strata and a 100 km² anchor cell: 100 migrants
    field = make_field(planar_case_study, density=1.0)
    anchor = AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0)

    fd = extract_focus_data(field, _planar_focus(mpp=100.0), planar_case_study)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(anchor, 0)
    assert path.density_integral == pytest.approx(3 * DT)
    assert path.migrants == 100.0
    assert path.line_count == 1
    assert path.state is PathState.COMPLETED

    fd = extract_focus_data(field, _planar_focus(mpp=100.5), planar_case_study)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(anchor, 0)
    assert path.line_count == 0
    assert path.state is PathState.SUPPRESSED
    assert path.points == ()

    fd = extract_focus_data(field, _planar_focus(mpp=25.0), planar_case_study)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(anchor, 0)
    assert path.line_count == 4


def test_suppressed_paths_are_excluded(planar_case_study, make_field):
    field = make_field(planar_case_study, density=1.0)
    anchors = [AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0)]
    planar = PlanarDisplacement()
    fd = extract_focus_data(field, _planar_focus(mpp=100.0), planar_case_study)
    assert len(compute_paths(fd, anchors, IdwInterpolator(), displacement=planar)) == 1
    fd = extract_focus_data(field, _planar_focus(mpp=100.5), planar_case_study)
    assert compute_paths(fd, anchors, IdwInterpolator(), displacement=planar) == []


def test_empty_sources_terminate_path(planar_case_study, make_arrays, make_field):
    arrays = make_arrays(planar_case_study)
    arrays["speeds"][2] = 0.0
    fd = extract_focus_data(make_field(planar_case_study, arrays=arrays), _planar_focus(), planar_case_study)
    anchor = AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(anchor, 0)
    # step 0 completes, step 1 needs segment 2 for its second stage
    assert path.state is PathState.TERMINATED
    assert len(path.points) == 2
    assert path.points[-1].x == pytest.approx(2000.0 + 3.0 * DT)
    assert path.density_integral == pytest.approx(DT)
    assert path.line_count == 3


def test_leaving_the_domain_terminates_path(planar_case_study, make_field):
    fd = extract_focus_data(make_field(planar_case_study), _planar_focus(), planar_case_study)
    anchor = AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0)
    integrator = PathIntegrator(fd, IdwInterpolator(), config=PathConfig(domain_radius_km=10.0),
                                displacement=PlanarDisplacement())
    path = integrator.integrate(anchor, 0)
    assert path.state is PathState.TERMINATED
    assert len(path.points) == 3
    assert path.points[-1].x == pytest.approx(9200.0)
    assert path.points[-1].y == pytest.approx(12600.0)


def test_default_domain_is_the_anchor_radius(case_study, make_field, focus):
    # 20 m/s eastward: 24 km per segment, past 75 km from every radar after two steps
    fd = extract_focus_data(make_field(case_study, u=20.0, v=0.0), focus, case_study)
    anchor = AnchorPoint(lon=5.0, lat=51.0, radar_index=0)

    paths = compute_paths(fd, [anchor], IdwInterpolator())
    assert len(paths) == 1
    path = paths[0]
    assert path.state is PathState.TERMINATED
    assert len(path.points) == 2
    end = path.points[-1]
    nearest = min(distance_km(r.longitude, r.latitude, end.x, end.y) for r in case_study.radars)
    assert nearest <= PathConfig().radar_anchor_radius_km

    path = PathIntegrator(fd, IdwInterpolator(), config=PathConfig(bounded_domain=False)).integrate(anchor, 0)
    assert path.state is PathState.COMPLETED
    assert len(path.points) == fd.segment_count + 1


def test_domain_follows_anchor_radius():
    assert PathConfig().domain_limit_km == 75.0
    assert PathConfig(radar_anchor_radius_km=30.0).domain_limit_km == 30.0
    assert PathConfig(radar_anchor_radius_km=30.0, domain_radius_km=50.0).domain_limit_km == 50.0
    assert PathConfig(bounded_domain=False).domain_limit_km is None


def test_line_count_tolerates_rounding(planar_case_study, make_field):
    # 0.29 / km³ over 1 km and 100 km²: 29 migrants up to float error
    field = make_field(planar_case_study, density=0.29)
    fd = extract_focus_data(field, _planar_focus(mpp=0.29 * 100), planar_case_study)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(
        AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0), 0)
    assert path.migrants == pytest.approx(29.0)
    assert path.line_count == 1
    assert path.state is PathState.COMPLETED


def test_kriging_path_with_two_velocity_sources(case_study, make_arrays, make_field, focus):
    arrays = make_arrays(case_study)
    arrays["u_speeds"][:, 0, 0] = 3.0
    arrays["u_speeds"][:, 0, 1] = 5.0
    arrays["speeds"] = np.hypot(arrays["u_speeds"], arrays["v_speeds"])
    arrays["speeds"][:, 0, 2] = 0.0
    fd = extract_focus_data(make_field(case_study, arrays=arrays), focus, case_study)

    integrator = PathIntegrator(fd, KrigingInterpolator(), config=PathConfig(bounded_domain=False))
    radar = case_study.radars[0]
    u, v = integrator.velocity(radar.longitude, radar.latitude, 0, 0)
    assert u == pytest.approx(3.0)
    assert v == pytest.approx(4.0)

    path = integrator.integrate(AnchorPoint(lon=5.0, lat=51.0, radar_index=0), 0)
    assert path.state is PathState.COMPLETED
    assert len(path.points) == fd.segment_count + 1
    assert path.density_integral == pytest.approx(3 * DT)


def test_path_without_steps_is_suppressed(planar_case_study, make_arrays, make_field):
    arrays = make_arrays(planar_case_study)
    arrays["speeds"][0] = 0.0
    fd = extract_focus_data(make_field(planar_case_study, arrays=arrays), _planar_focus(), planar_case_study)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(
        AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0), 0)
    assert path.state is PathState.SUPPRESSED
    assert path.density_integral == 0.0


def test_compute_paths_is_idempotent(case_study, make_arrays, make_field, focus, anchors):
    arrays = make_arrays(case_study)
    arrays["u_speeds"][:, 0] = [[3.0, -2.0, 5.0], [4.0, -1.0, 6.0], [2.0, 0.5, 4.0], [1.0, 1.0, 1.0]]
    arrays["v_speeds"][:, 0] = [[6.0, 8.0, 2.0], [5.0, 7.0, 3.0], [7.0, 9.0, 1.0], [2.0, 2.0, 2.0]]
    arrays["densities"][:, 0] = [[2.0, 1.0, 3.0], [2.5, 0.5, 3.5], [1.5, 1.0, 2.0], [1.0, 1.0, 1.0]]
    arrays["speeds"] = np.hypot(arrays["u_speeds"], arrays["v_speeds"])
    fd = extract_focus_data(make_field(case_study, arrays=arrays), focus, case_study)

    assert len(compute_paths(fd, anchors, IdwInterpolator())) == len(anchors)
    for interp in (IdwInterpolator(), KrigingInterpolator(model="exponential")):
        first = compute_paths(fd, anchors, interp)
        second = compute_paths(fd, anchors, interp)
        assert [p.points for p in first] == [p.points for p in second]
        assert [p.line_count for p in first] == [p.line_count for p in second]
        assert [p.migrants for p in first] == [p.migrants for p in second]


def test_estimators_are_cached_per_call(case_study, make_field, focus, anchors):
    fd = extract_focus_data(make_field(case_study), focus, case_study)
    one = CountingIdw()
    compute_paths(fd, anchors[:1], one)
    many = CountingIdw()
    compute_paths(fd, anchors, many)
    assert one.trained == many.trained
    # a new call trains again
    compute_paths(fd, anchors, many)
    assert many.trained == 2 * one.trained


def test_strata_without_density_is_skipped(case_study, make_arrays, make_field, anchors):
    arrays = make_arrays(case_study, option_index=1)
    arrays["densities"][:, 1] = 0.0
    focus = FocusWindow(start=T0, duration=1.0, strata_option_index=1, migrants_per_path=10)
    fd = extract_focus_data(make_field(case_study, option_index=1, arrays=arrays), focus, case_study)
    paths = compute_paths(fd, anchors, IdwInterpolator())
    assert {p.strata for p in paths} == {0}
    assert len(paths) == len(anchors)


def test_out_of_range_focus_yields_no_paths(case_study, make_field, anchors):
    focus = FocusWindow(start=T0 + timedelta(hours=5), duration=1.0, migrants_per_path=10)
    fd = extract_focus_data(make_field(case_study), focus, case_study)
    assert compute_paths(fd, anchors, IdwInterpolator()) == []


def test_angles_are_unwrapped(planar_case_study, make_arrays, make_field):
    # heading swings across south: just east of south, then just west of south
    arrays = make_arrays(planar_case_study)
    arrays["u_speeds"][:] = np.array([0.1, -0.1, 0.1, -0.1])[:, None, None]
    arrays["v_speeds"][:] = -5.0
    arrays["speeds"] = np.hypot(arrays["u_speeds"], arrays["v_speeds"])
    fd = extract_focus_data(make_field(planar_case_study, arrays=arrays), _planar_focus(), planar_case_study)
    path = PathIntegrator(fd, IdwInterpolator(), displacement=PlanarDisplacement()).integrate(
        AnchorPoint(lon=2000.0, lat=3000.0, radar_index=0), 0)
    angles = [p.angle for p in path.points]
    assert all(abs(b - a) <= math.pi for a, b in zip(angles, angles[1:]))
