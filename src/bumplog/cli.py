"""
Speed bump logger CLI entrypoint.

This CLI is intended for in-vehicle use on hosts running gpsd, and for quick
inspection of the shared bump history without the web UI.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from bumplog.config.settings import get_settings
from bumplog.core.errors import GeolocationError
from bumplog.core.logging import configure_logging
from bumplog.domain.models import Detection, SpeedBumpEvent
from bumplog.geolocation.gpsd import GpsdGeolocationSource
from bumplog.monitoring.controller import MonitoringController
from bumplog.monitoring.runtime import build_controller, build_gateway


def _format_bump(bump: SpeedBumpEvent) -> str:
    when = bump.detected_at.strftime("%b %d %H:%M")
    acc = f" ±{bump.accuracy:.0f} m" if bump.accuracy is not None else ""
    return f"{when}  {bump.latitude:.6f}, {bump.longitude:.6f}  {bump.speed:5.1f} km/h{acc}  {bump.maps_url}"


def _format_state(controller: MonitoringController) -> str:
    dist = controller.distance_to_nearest
    dist_text = f"{dist:,.0f} m" if dist is not None else "n/a"
    return f"speed={controller.current_speed:5.1f} km/h  bumps={len(controller.bumps)}  nearest={dist_text}"


def _ring(detection: Detection) -> None:
    # Terminal bell stands in for the phone's vibration.
    sys.stdout.write("\a")
    print(f"Bump! {detection.previous_speed_kmh:.1f} -> {detection.speed_kmh:.1f} km/h")


async def _monitor(args: argparse.Namespace) -> int:
    settings = get_settings()
    source = GpsdGeolocationSource(settings.geolocation.gpsd)
    controller = await build_controller(settings, source=source, on_detection=_ring)
    try:
        try:
            await controller.start()
        except GeolocationError as exc:
            print(f"Could not start monitoring: {exc}", file=sys.stderr)
            return 2

        loop = asyncio.get_running_loop()
        deadline = loop.time() + args.duration if args.duration else None
        while controller.is_monitoring:
            if deadline is not None and loop.time() >= deadline:
                break
            print(_format_state(controller))
            await asyncio.sleep(float(args.interval))

        if controller.last_error is not None:
            print(f"Monitoring stopped: {controller.last_error}", file=sys.stderr)
            return 2
        await controller.drain()
        return 0
    finally:
        await controller.close()


def _cmd_monitor(args: argparse.Namespace) -> int:
    try:
        return asyncio.run(_monitor(args))
    except KeyboardInterrupt:
        return 130


async def _list_bumps(args: argparse.Namespace) -> int:
    gateway = build_gateway(get_settings())
    try:
        bumps = await gateway.load()
    finally:
        await gateway.close()

    if args.json:
        print(json.dumps([b.model_dump(mode="json") for b in bumps], ensure_ascii=False, indent=2))
        return 0

    print(f"Detected bumps ({len(bumps)}):")
    for b in bumps:
        print(f"  {_format_bump(b)}")
    return 0


def _cmd_bumps(args: argparse.Namespace) -> int:
    return asyncio.run(_list_bumps(args))


async def _clear(_: argparse.Namespace) -> int:
    settings = get_settings()
    gateway = build_gateway(settings)
    try:
        await gateway.clear()
    finally:
        await gateway.close()
    print(
        f"History cleared (remote rows from the last {settings.store.clear_window_days} days, all local data)."
    )
    return 0


def _cmd_clear(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to clear history without --yes.", file=sys.stderr)
        return 1
    return asyncio.run(_clear(args))


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("bumplog.api.app:app", host=args.host, port=int(args.port), log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the bumplog CLI."""
    parser = argparse.ArgumentParser(prog="bumplog")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    sub = parser.add_subparsers(dest="command", required=True)

    mon = sub.add_parser("monitor", help="Detect and log speed bumps from gpsd until interrupted.")
    mon.add_argument("--interval", type=float, default=1.0, help="Seconds between status lines.")
    mon.add_argument("--duration", type=float, default=None, help="Stop after this many seconds.")
    mon.set_defaults(func=_cmd_monitor)

    lst = sub.add_parser("bumps", help="Load and list recent speed bumps (falls back to the local cache).")
    lst.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    lst.set_defaults(func=_cmd_bumps)

    clr = sub.add_parser("clear", help="Clear history: remote rows in the trailing window, all local data.")
    clr.add_argument("--yes", action="store_true", help="Confirm the clear.")
    clr.set_defaults(func=_cmd_clear)

    srv = sub.add_parser("serve", help="Run the HTTP API (browser geolocation relay + state).")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    srv.set_defaults(func=_cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m bumplog.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging("DEBUG" if args.verbose else None)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
