"""Command line front end: run one service request against a simulation run."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config_utils import configure_logging, load_config, load_simulation_run
from .errors import CLIENT_FAULT, PlasmaGridError
from .schema import RequestEnvelope
from .service import InterpolationService, to_fault

logger = logging.getLogger(__name__)

METHODS = (
    "getDataPointValue",
    "getSurface",
    "getFieldLine",
    "getDataPointSpectra",
    "getParticleTrajectory",
    "getDataPointValueSpacecraft",
)


def _vector(text: str) -> List[float]:
    try:
        values = [float(part) for part in text.replace(",", " ").split()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a vector: {text}") from exc
    if len(values) != 3:
        raise argparse.ArgumentTypeError(f"expected 3 components, got {len(values)}: {text}")
    return values


def _box(text: str) -> List[float]:
    try:
        values = [float(part) for part in text.replace(",", " ").split()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a box: {text}") from exc
    if len(values) != 6:
        raise argparse.ArgumentTypeError(f"expected xmin xmax ymin ymax zmin zmax, got {len(values)} values: {text}")
    return values


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Interpolate simulation run results at caller-supplied points")
    parser.add_argument("--config", type=Path, help="Path to the YAML service configuration")
    parser.add_argument("--run", type=Path, required=True, help="Path to the YAML simulation run metadata")
    parser.add_argument("--method", choices=METHODS, default="getDataPointValue")
    parser.add_argument("--resource-id", help="NumericalOutput ResourceID (defaults to the run's)")
    parser.add_argument("--url", help="URL or path of the sample point file")
    parser.add_argument("--variables", default="", help="Comma separated parameter keys; empty means all")
    parser.add_argument("--interpolation-method", choices=["Linear", "NearestGridPoint"], default="Linear")
    parser.add_argument("--output-format", choices=["VOTable", "netCDF", "ASCII"], default="VOTable")
    parser.add_argument("--position-coefficient", type=float, default=1.0)
    parser.add_argument("--plane-normal", type=_vector, help="getSurface: plane normal, e.g. '0,0,1'")
    parser.add_argument("--plane-point", type=_vector, help="getSurface: point on the plane [m]")
    parser.add_argument("--resolution", type=float, help="getSurface: mesh step [m]")
    parser.add_argument("--direction", choices=["Forward", "Backward", "Both"], default="Forward")
    parser.add_argument("--step-size", type=float, help="getFieldLine: step [m]; getParticleTrajectory: step [s]")
    parser.add_argument("--max-steps", type=int, default=100)
    parser.add_argument("--stop-radius", type=float, default=0.0, help="getParticleTrajectory: planetary boundary [m]")
    parser.add_argument("--stop-region", type=_box, help="getParticleTrajectory: 'xmin,xmax,ymin,ymax,zmin,zmax' [m]")
    parser.add_argument("--spacecraft", help="getDataPointValueSpacecraft: spacecraft name, e.g. MEX")
    parser.add_argument("--start-time", help="getDataPointValueSpacecraft: ISO 8601 start time")
    parser.add_argument("--stop-time", help="getDataPointValueSpacecraft: ISO 8601 stop time")
    parser.add_argument("--sampling", help="getDataPointValueSpacecraft: ISO 8601 duration, e.g. PT60S")
    parser.add_argument("--energy-channels", default="", help="getDataPointSpectra: comma separated band names")
    parser.add_argument(
        "--override",
        action="append",
        nargs="+",
        metavar="PATH=VALUE",
        help="Apply configuration overrides using dotted paths; e.g. --override engine.timeout_s=30",
    )
    parser.add_argument(
        "--quiet",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Suppress INFO logs and Python warnings (defaults to the configuration file)",
    )
    return parser


def request_payload(args: argparse.Namespace, default_resource_id: str) -> Dict[str, Any]:
    """Collect the request fields relevant to ``args.method``."""

    payload: Dict[str, Any] = {
        "method": args.method,
        "resource_id": args.resource_id or default_resource_id,
        "variables": args.variables,
    }
    if args.method not in ("getSurface", "getDataPointValueSpacecraft"):
        payload["url_xyz"] = args.url
    if args.method != "getFieldLine":
        payload["interpolation_method"] = args.interpolation_method
    if args.method in ("getDataPointValue", "getSurface", "getDataPointValueSpacecraft"):
        payload["output_format"] = args.output_format
    if args.method == "getDataPointValue":
        payload["position_coefficient"] = args.position_coefficient
    elif args.method == "getSurface":
        payload["plane_normal"] = args.plane_normal
        payload["plane_point"] = args.plane_point
        payload["resolution"] = args.resolution
    elif args.method == "getFieldLine":
        payload["direction"] = args.direction
        payload["step_size"] = args.step_size
        payload["max_steps"] = args.max_steps
    elif args.method == "getDataPointSpectra":
        payload["energy_channels"] = [item.strip() for item in args.energy_channels.split(",") if item.strip()]
    elif args.method == "getParticleTrajectory":
        payload["direction"] = args.direction
        payload["step_size"] = args.step_size
        payload["max_steps"] = args.max_steps
        payload["stop_radius"] = args.stop_radius
        payload["stop_region"] = args.stop_region
    elif args.method == "getDataPointValueSpacecraft":
        payload["spacecraft_name"] = args.spacecraft
        payload["start_time"] = args.start_time
        payload["stop_time"] = args.stop_time
        payload["sampling"] = args.sampling
    return payload


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point; prints the result URL or the fault."""

    args = build_parser().parse_args(argv)
    overrides: List[str] = []
    for group in args.override or []:
        overrides.extend(group)

    try:
        cfg = load_config(args.config, overrides=overrides)
        quiet = cfg.logging.quiet if args.quiet is None else bool(args.quiet)
        configure_logging(
            logging.WARNING if quiet else getattr(logging, cfg.logging.level),
            suppress_warnings=quiet,
        )
        run = load_simulation_run(args.run)
        try:
            envelope = RequestEnvelope(request=request_payload(args, run.resource_id))
        except ValidationError as exc:
            print(f"{CLIENT_FAULT}: Illegal input parameter value: {exc}", file=sys.stderr)
            return 2
        url = InterpolationService(cfg).handle(envelope.request, run)
    except PlasmaGridError as exc:
        fault = to_fault(exc)
        print(f"{fault.category}: {fault.message}", file=sys.stderr)
        return 1
    print(url)
    return 0


if __name__ == "__main__":  # pragma: no cover - standard CLI entrypoint
    sys.exit(main())
