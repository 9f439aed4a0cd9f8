import argparse
import logging

from flowpaths.anchors import build_anchors
from flowpaths.config import PathConfig
from flowpaths.export import paths_to_geojson, write_geojson
from flowpaths.field_store import DirectorySource, HttpSource, SegmentedFieldStore
from flowpaths.focus_data import extract_focus_data
from flowpaths.interpolation import make_interpolator
from flowpaths.logging_config import setup_logging
from flowpaths.models import load_case_study
from flowpaths.trajectory import compute_paths
from flowpaths.utils_time import parse_iso_z

logger = logging.getLogger("flowpaths.run_paths")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Compute migration flow paths for a focus window.")
    ap.add_argument("case_dir", help="Case study directory holding metadata.json")
    ap.add_argument("--data", default=None, help="Folder or http(s) URL with data-<i>.json files (default: CASE_DIR)")
    ap.add_argument("--start", default=None, help="Focus start, ISO time (default: case study default)")
    ap.add_argument("--hours", type=float, default=None, help="Focus duration in hours")
    ap.add_argument("--strata-option", type=int, default=None)
    ap.add_argument("--migrants-per-path", type=float, default=None)
    ap.add_argument("--interpolator", default="idw", help="idw | kriging | kriging-<model>")
    ap.add_argument("--radius-km", type=float, default=None, help="Anchor radius around radars")
    ap.add_argument("--unbounded", action="store_true", help="Do not terminate paths that leave the anchor radius")
    ap.add_argument("--out", default="paths.geojson")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    cfg = PathConfig(bounded_domain=not args.unbounded)
    if args.radius_km is not None:
        cfg.radar_anchor_radius_km = args.radius_km

    cs = load_case_study(args.case_dir)
    focus = cs.default_focus()
    if args.start:
        focus.set_start(parse_iso_z(args.start))
    if args.hours is not None:
        focus.set_duration(args.hours)
    if args.strata_option is not None:
        focus.strata_option_index = args.strata_option
    if args.migrants_per_path is not None:
        if args.migrants_per_path not in cfg.migrants_per_path_options:
            logger.warning(f"migrants per path {args.migrants_per_path} is not one of "
                           f"{cfg.migrants_per_path_options}")
        focus.migrants_per_path = args.migrants_per_path
    focus.constrain(cs)

    data = args.data or args.case_dir
    if data.startswith(("http://", "https://")):
        source = HttpSource(data)
    else:
        source = DirectorySource(data)
    store = SegmentedFieldStore(source, cs)

    anchors = build_anchors(cs, radius_km=cfg.radar_anchor_radius_km)

    interp = make_interpolator(args.interpolator) if args.interpolator != "idw" \
        else make_interpolator("idw", power=cfg.idw_power)

    fd = extract_focus_data(store, focus, cs)
    for w in fd.warnings:
        logger.warning(f"{w.kind}: {w.message}")
    paths = compute_paths(fd, anchors, interp, cfg)

    write_geojson(paths_to_geojson(paths, fd.strata_option), args.out)
    logger.info(f"Wrote {len(paths)} paths ({sum(p.line_count for p in paths)} lines) to {args.out}")


if __name__ == "__main__":
    main()
