"""Command-line check-in verification.

Runs one check-in through the pipeline against a station registry file
and an in-memory ledger, then prints the outcome as JSON on stdout.

Usage:
    python -m checkin.verify --registry seeds/station_registry.csv \\
        --text "Kings X St Pancras" --lat 51.5308 --lon -0.1238
    python -m checkin.verify --registry stations.geojson --text Hammersmith
    python -m checkin.verify --registry seeds/station_registry.csv \\
        --text Euston --save-pending
"""

from __future__ import annotations

import argparse
import dataclasses
import enum
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Final

from checkin.config import ConfigError, load_config
from checkin.contracts import OCRResult
from checkin.ledger import InMemoryVisitLedger
from checkin.pipeline import CheckInFailure, CheckInPipeline, CheckInResult
from checkin.registry import RegistryError, load_registry

logger: Final = logging.getLogger(__name__)

_DEFAULT_ACTIVITY: Final = "cli"


def _json_default(value: object) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def result_to_dict(result: CheckInResult) -> dict[str, Any]:
    """Flatten a pipeline result into JSON-ready primitives."""
    payload: dict[str, Any] = {"ok": result.ok, "stage": result.stage.value}
    payload.update(dataclasses.asdict(result))
    if isinstance(result, CheckInFailure):
        payload["remediation"] = result.remediation
        payload["can_save_pending"] = result.can_save_pending
    return json.loads(json.dumps(payload, default=_json_default))


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the verification CLI."""
    parser = argparse.ArgumentParser(
        description="Verify a station check-in from OCR text and an optional GPS fix.",
    )
    parser.add_argument(
        "--registry",
        type=Path,
        required=True,
        help="Station registry file (.csv, .json or .geojson).",
    )
    parser.add_argument(
        "--text",
        default="",
        help="Station text recognised on the roundel.",
    )
    parser.add_argument(
        "--hint",
        default=None,
        help="Secondary station name guess, used when --text is blank.",
    )
    parser.add_argument(
        "--confidence",
        type=float,
        default=1.0,
        help="OCR confidence in [0, 1].",
    )
    parser.add_argument(
        "--no-roundel",
        action="store_true",
        help="Simulate a photo with no roundel detected.",
    )
    parser.add_argument("--lat", type=float, default=None, help="Device latitude.")
    parser.add_argument("--lon", type=float, default=None, help="Device longitude.")
    parser.add_argument(
        "--activity",
        default=_DEFAULT_ACTIVITY,
        help="Activity identifier for the check-in.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="TOML file with a [checkin] table.",
    )
    parser.add_argument(
        "--simulation",
        action="store_true",
        help="Bypass geofence enforcement.",
    )
    parser.add_argument(
        "--save-pending",
        action="store_true",
        help="Save a geofence failure as a pending check-in.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug-level logging.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for check-in verification.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code: 0 if a record was written, 1 otherwise.
    """
    parser = _build_arg_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )

    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be given together")
    if not 0.0 <= args.confidence <= 1.0:
        parser.error("--confidence must be within [0, 1]")

    try:
        config = load_config(args.config)
        registry = load_registry(args.registry)
    except (ConfigError, RegistryError, OSError) as exc:
        logger.error("%s", exc)
        return 1

    if args.simulation:
        config = dataclasses.replace(config, simulation_mode=True)

    ocr = OCRResult(
        raw_text=args.text,
        station_text_raw=args.text,
        detected=not args.no_roundel,
        confidence=args.confidence,
        station_name_hint=args.hint,
    )
    location = None if args.lat is None else (args.lat, args.lon)

    pipeline = CheckInPipeline(registry, InMemoryVisitLedger(), config)
    result = pipeline.run(args.activity, ocr, location)

    if isinstance(result, CheckInFailure) and args.save_pending:
        if result.can_save_pending:
            result = pipeline.save_pending(result)
        else:
            logger.warning("A %s failure cannot be saved as pending", result.kind.value)

    print(json.dumps(result_to_dict(result), indent=2))
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
