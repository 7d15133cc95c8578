"""
ridemap CLI entrypoint.

This CLI is intended for quick local demos and debugging without a map client.
Each subcommand runs one core operation against the configured driver listing
and routing providers.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
from typing import Any

from ridemap.config.settings import get_settings
from ridemap.core.logging import configure_logging
from ridemap.core.provider_meta import capture_provider_meta
from ridemap.domain.models import Coordinate, known
from ridemap.drivers.loader import fetch_driver_listing
from ridemap.mapping.markers import synthesize_markers
from ridemap.mapping.region import compute_region
from ridemap.routing.estimator import build_providers, calculate_route, estimate_driver_times


def _coordinate(lat: float | None, lng: float | None) -> Coordinate | None:
    if lat is None or lng is None:
        return None
    return Coordinate(latitude=float(lat), longitude=float(lng))


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _cmd_region(args: argparse.Namespace) -> int:
    region = compute_region(
        _coordinate(args.rider_lat, args.rider_lng),
        _coordinate(args.dest_lat, args.dest_lng),
        settings=get_settings(),
    )
    if args.json:
        _print_json(region.model_dump(mode="json"))
        return 0
    print(
        f"center=({region.latitude:.6f}, {region.longitude:.6f}) "
        f"delta=({region.latitude_delta:.6f}, {region.longitude_delta:.6f})"
    )
    return 0


def _cmd_markers(args: argparse.Namespace) -> int:
    settings = get_settings()
    listing = fetch_driver_listing(settings)
    if not listing.available:
        print(f"Driver listing unavailable: {listing.error}")
        return 1

    markers = synthesize_markers(
        listing.drivers,
        args.rider_lat,
        args.rider_lng,
        max_offset_deg=settings.mapping.markers.max_offset_deg,
    )
    if args.json:
        _print_json([m.model_dump(mode="json") for m in markers])
        return 0
    for m in markers:
        print(f"{m.id!s:>4}  {m.title or 'Driver':<24} ({m.latitude:.6f}, {m.longitude:.6f})")
    return 0


async def _estimate(args: argparse.Namespace) -> tuple[list, dict]:
    settings = get_settings()
    listing = fetch_driver_listing(settings)
    if not listing.available:
        raise RuntimeError(f"Driver listing unavailable: {listing.error}")

    markers = synthesize_markers(
        listing.drivers,
        args.rider_lat,
        args.rider_lng,
        max_offset_deg=settings.mapping.markers.max_offset_deg,
    )
    primary, _ = build_providers(settings)
    with capture_provider_meta() as meta:
        enriched = await estimate_driver_times(
            markers,
            args.rider_lat,
            args.rider_lng,
            args.dest_lat,
            args.dest_lng,
            provider=primary,
            settings=settings,
        )
    return enriched, meta.sources


def _cmd_estimate(args: argparse.Namespace) -> int:
    try:
        enriched, sources = asyncio.run(_estimate(args))
    except RuntimeError as exc:
        print(str(exc))
        return 1

    if args.json:
        _print_json({"markers": [m.model_dump(mode="json") for m in enriched], "meta": sources})
        return 0
    if not enriched:
        print("No drivers could be routed (try again later).")
        return 0
    for m in sorted(enriched, key=lambda m: m.time if m.time is not None else math.inf):
        print(f"{m.title or 'Driver':<24} eta={m.time:>3} min  price=${m.price}")
    return 0


def _cmd_route(args: argparse.Namespace) -> int:
    rider = _coordinate(args.rider_lat, args.rider_lng)
    destination = _coordinate(args.dest_lat, args.dest_lng)
    if not (known(rider) and known(destination)):
        print("Rider and destination must be valid coordinates.")
        return 1

    primary, fallback = build_providers(get_settings())
    result = asyncio.run(calculate_route(rider, destination, primary=primary, fallback=fallback))
    if args.json:
        _print_json(result.model_dump(mode="json"))
        return 0
    duration = f"{result.time_seconds / 60:.1f} min" if result.time_seconds is not None else "n/a"
    print(f"provider={result.provider} points={len(result.path)} duration={duration}")
    return 0


def _add_rider(p: argparse.ArgumentParser) -> None:
    p.add_argument("--rider-lat", required=True, type=float)
    p.add_argument("--rider-lng", required=True, type=float)


def _add_destination(p: argparse.ArgumentParser, *, required: bool) -> None:
    p.add_argument("--dest-lat", required=required, type=float, default=None)
    p.add_argument("--dest-lng", required=required, type=float, default=None)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ridemap CLI."""
    parser = argparse.ArgumentParser(prog="ridemap")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    reg = sub.add_parser("region", help="Viewport enclosing rider and destination.")
    reg.add_argument("--rider-lat", type=float, default=None)
    reg.add_argument("--rider-lng", type=float, default=None)
    _add_destination(reg, required=False)
    reg.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    reg.set_defaults(func=_cmd_region)

    mk = sub.add_parser("markers", help="Place the driver listing around the rider.")
    _add_rider(mk)
    mk.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    mk.set_defaults(func=_cmd_markers)

    est = sub.add_parser("estimate", help="ETA and price for every routable driver.")
    _add_rider(est)
    _add_destination(est, required=True)
    est.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    est.set_defaults(func=_cmd_estimate)

    rt = sub.add_parser("route", help="Rider -> destination route (primary, fallback, straight line).")
    _add_rider(rt)
    _add_destination(rt, required=True)
    rt.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    rt.set_defaults(func=_cmd_route)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m ridemap.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging("DEBUG" if args.verbose else None)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
