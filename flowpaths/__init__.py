from .anchors import AnchorPoint, build_anchors
from .config import PathConfig
from .engine import FlowPathEngine, Recomputation
from .errors import (
    CoincidentPoint,
    Condition,
    ConfigurationError,
    ConsistencyError,
    DataUnavailable,
    EmptySources,
    FlowPathError,
    InterpolationError,
)
from .field_store import DirectorySource, HttpSource, SegmentedField, SegmentedFieldStore
from .focus_data import FocusData, extract_focus_data
from .geo import GeodesicDisplacement, PlanarDisplacement
from .interpolation import IdwInterpolator, KrigingInterpolator, idw, make_interpolator
from .models import CaseStudy, FocusWindow, Radar, load_case_study
from .trajectory import Path, PathIntegrator, PathPoint, PathState, compute_paths
