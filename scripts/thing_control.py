#!/usr/bin/env python3
"""Reconcile Things against a running home server and optionally command them.

Usage
-----
Point the engine at the server and run::

    export THINGSYNC_BASE_URL="http://127.0.0.1:8000"
    python scripts/thing_control.py d1 d2 --group Office

Options::

    --group NAME         Also track this group (repeatable)
    --power on|off       Send a power command to every listed Thing
    --color TEXT         Send a colour command, e.g. "kelvin:2700"
    --watch SECONDS      Keep refreshing and print every view change
    --json               Output as machine-readable JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import aiohttp

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from thingsync import Engine, EngineConfig, ThingView  # noqa: E402
from thingsync._tools.commands import CommandOutcome, build_desired, format_outcome, issue_all  # noqa: E402


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _format_view(view: ThingView) -> str:
    power = view.power.value if view.power is not None else "?"
    color = view.color.to_command_string() if view.color is not None else ""
    flags = []
    if view.offline:
        flags.append("offline")
    if view.pending:
        flags.append("pending")
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return f"  {view.oid:<16} {view.status.value:<12} {power:<4} {view.title} {color}{suffix}".rstrip()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile and command smart-lighting Things.")
    parser.add_argument("oids", nargs="*", help="Device oids to track")
    parser.add_argument("--group", action="append", default=[], help="Group name to track (repeatable)")
    parser.add_argument("--power", choices=["on", "off"], help="Send a power command")
    parser.add_argument("--color", help='Send a colour command, e.g. "kelvin:2700" or "#ff8800"')
    parser.add_argument("--watch", type=float, default=0.0, help="Keep refreshing for SECONDS")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.oids and not args.group:
        parser.error("nothing to track: pass device oids and/or --group")

    try:
        desired = build_desired(args.power, args.color)
    except ValueError as exc:
        parser.error(str(exc))

    config = EngineConfig.from_env()

    def _on_change(view: ThingView) -> None:
        if args.watch and not args.json_mode:
            print(_format_view(view))

    outcomes: list[CommandOutcome] = []
    async with aiohttp.ClientSession() as http:
        async with Engine.over_http(config, http, on_change=_on_change) as engine:
            await asyncio.gather(
                *(engine.init(oid) for oid in args.oids),
                *(engine.init(name, is_group=True) for name in args.group),
            )
            if desired is not None:
                outcomes = await issue_all(engine, [*args.oids, *args.group], desired)

            loop = asyncio.get_running_loop()
            deadline = loop.time() + args.watch
            while loop.time() < deadline:
                await asyncio.sleep(min(1.0, deadline - loop.time()))
                await engine.refresh()

            views = engine.views()

    if args.json_mode:
        payload = {
            "base_url": config.base_url,
            "things": [view.model_dump(mode="json") for view in views],
            "commands": [outcome.to_dict() for outcome in outcomes],
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    out = [_section(f"thingsync @ {config.base_url}")]
    out.extend(_format_view(view) for view in views)
    if outcomes:
        out.append(_section("COMMANDS"))
        out.extend(format_outcome(outcome) for outcome in outcomes)
    print("\n".join(out))


if __name__ == "__main__":
    asyncio.run(main())
