import math
from datetime import datetime, timezone

import numpy as np
import pytest

from flowpaths.anchors import AnchorPoint
from flowpaths.field_store import SegmentedField
from flowpaths.models import CaseStudy, FocusWindow, Radar

T0 = datetime(2016, 9, 1, 0, 0, tzinfo=timezone.utc)


def radars_from_locations(locations):
    return [Radar(id=rid, longitude=lon, latitude=lat, index=i)
            for i, (rid, lon, lat) in enumerate(locations)]


@pytest.fixture
def metadata():
    # 4 segments of 20 min, 3 radars
    return {
        "label": "Test case",
        "radars": [
            {"id": "bejab", "longitude": 4.45, "latitude": 51.19},
            {"id": "bewid", "longitude": 5.50, "latitude": 49.91},
            {"id": "nldbl", "longitude": 5.18, "latitude": 52.10},
        ],
        "dataFrom": "2016-09-01T00:00:00Z",
        "dataTill": "2016-09-01T01:20:00Z",
        "segmentSize": 20,
        "strataOptions": [[[0, 1000]], [[0, 1000], [1000, 3000]]],
        "anchorInterval": 10,
        "mapCenter": [5.0, 51.0],
        "defaultFocusFrom": "2016-09-01T00:00:00Z",
        "defaultFocusDuration": 1,
        "defaultStrataOption": 0,
        "defaultMigrantsPerPath": 10,
    }


@pytest.fixture
def case_study(metadata):
    return CaseStudy.from_metadata(metadata, "test16a")


@pytest.fixture
def planar_case_study():
    # radar coordinates are meters on a plane
    return CaseStudy(
        id="planar",
        radars=radars_from_locations([("a", 0.0, 0.0), ("b", 10000.0, 0.0), ("c", 0.0, 10000.0)]),
        data_from=T0,
        data_till=datetime(2016, 9, 1, 1, 20, tzinfo=timezone.utc),
        segment_size=20,
        strata_options=[[(0.0, 1000.0)]],
        anchor_interval=10.0,
        default_migrants_per_path=10,
    )


@pytest.fixture
def make_arrays():
    def make(case_study, option_index=0, segments=None, u=3.0, v=4.0, density=1.0):
        segments = case_study.segment_count if segments is None else segments
        shape = (segments, len(case_study.strata_option(option_index)), case_study.radar_count)
        return {
            "densities": np.full(shape, density),
            "u_speeds": np.full(shape, u),
            "v_speeds": np.full(shape, v),
            "speeds": np.full(shape, math.hypot(u, v)),
        }
    return make


@pytest.fixture
def make_field(make_arrays):
    def make(case_study, option_index=0, arrays=None, **kw):
        if arrays is None:
            arrays = make_arrays(case_study, option_index, **kw)
        return SegmentedField.from_arrays(arrays, case_study.strata_option(option_index),
                                          [r.id for r in case_study.radars], option_index)
    return make


@pytest.fixture
def focus():
    return FocusWindow(start=T0, duration=1.0, strata_option_index=0, migrants_per_path=10)


@pytest.fixture
def anchors():
    return [
        AnchorPoint(lon=5.0, lat=51.0, radar_index=0),
        AnchorPoint(lon=4.8, lat=51.4, radar_index=0),
        AnchorPoint(lon=5.3, lat=50.2, radar_index=1),
    ]
