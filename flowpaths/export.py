import json
from typing import Iterable, Optional, Sequence

from .models import Stratum
from .trajectory import Path


def paths_to_geojson(paths: Iterable[Path], strata_option: Optional[Sequence[Stratum]] = None):
    feats = []
    for p in paths:
        props = {
            "strata": p.strata,
            "state": p.state.value,
            "line_count": p.line_count,
            "migrants": float(p.migrants),
            "anchor": [p.anchor.lon, p.anchor.lat],
            "densities": [float(pt.density) for pt in p.points],
            "angles": [float(pt.angle) for pt in p.points],
        }
        if strata_option is not None:
            lo, hi = strata_option[p.strata]
            props["altitude_m"] = [lo, hi]
        feats.append({
            "type": "Feature",
            "properties": props,
            "geometry": {"type": "LineString", "coordinates": [[float(x), float(y)] for x, y in p.coordinates]}
        })
    return {"type": "FeatureCollection", "features": feats}


def write_geojson(obj: dict, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f)
