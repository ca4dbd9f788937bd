#!/usr/bin/env python3
"""
Grid Monitor client for the electricity grid telemetry endpoint
Polls node status, classifies each node, and tracks verification requests

Usage:
    python monitor.py                                  # TUI, multi-node dashboard (default)
    python monitor.py --mode single --url http://127.0.0.1:3002
                                                       # TUI for one district device
    python monitor.py --no-tui                         # Plain CLI mode
    python monitor.py --web                            # TUI + web dashboard API
    python monitor.py --web-only --web-port 8000       # Web dashboard API only
    python monitor.py --once                           # Poll once, print summary
    python monitor.py --verify addis_001               # Ask HQ to re-check a node
    python monitor.py --mode single --action connect   # connect/disconnect/reconnect/...
    python monitor.py --mode single --set-voltage 150
    python monitor.py --mode single --configure addis_001 "West Addis Ababa"

Multi-node mode polls <url>/api/nodes and /api/stats every 2s; single mode
polls <url>/api/status every 1s.
"""

import argparse
import asyncio
import sys

from constants import ACTION_VERBS, DEFAULT_BASE_URL, TRIGGER_PHRASES
from grid_client import GridClient, GridClientError
from log_watcher import LogWatcher
from poll_scheduler import PollScheduler

# Check for textual
_HAS_TEXTUAL = False
try:
    from tui_app import GridMonitorApp
    _HAS_TEXTUAL = True
except ImportError:
    print("Note: textual not available. Install with: pip install textual")
    print("      Falling back to plain CLI mode.\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Grid Monitor client")
    parser.add_argument("--url", type=str, default=DEFAULT_BASE_URL,
                        help=f"Endpoint base URL (default {DEFAULT_BASE_URL})")
    parser.add_argument("--mode", choices=["single", "multi"], default="multi",
                        help="single = one district device, multi = HQ node dashboard")
    parser.add_argument("--interval", type=float, default=None,
                        help="Poll period in seconds (default 1.0 single / 2.0 multi)")
    parser.add_argument("--timeout", type=float, default=5.0, help="HTTP timeout")
    parser.add_argument("--trigger", action="append", default=None, metavar="PHRASE",
                        help="Log phrase that raises an alert (repeatable; "
                             "replaces the defaults)")
    parser.add_argument("--verbose", action="store_true",
                        help="Show debug log lines in CLI mode")
    parser.add_argument("--no-tui", action="store_true",
                        help="Use plain CLI mode instead of TUI")
    parser.add_argument("--web", action="store_true",
                        help="Enable web dashboard API alongside TUI")
    parser.add_argument("--web-only", action="store_true",
                        help="Web dashboard API only, no TUI")
    parser.add_argument("--web-port", type=int, default=8000,
                        help="Web dashboard port (default 8000)")
    parser.add_argument("--once", action="store_true", help="Poll once and print summary")
    parser.add_argument("--action", choices=ACTION_VERBS, help="Send one action")
    parser.add_argument("--verify", type=str, metavar="NODE_ID",
                        help="Request verification for a node")
    parser.add_argument("--set-voltage", type=float, metavar="VOLTS",
                        help="Manual voltage override")
    parser.add_argument("--configure", nargs=2, metavar=("NODE_ID", "REGION"),
                        help="Assign device identity, then connect")
    return parser


def main(argv=None):
    """Entry point: decides between TUI, CLI, web-only and one-shot modes."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")

    is_oneshot = args.once or args.action or args.verify or args.configure \
        or args.set_voltage is not None

    if is_oneshot:
        sys.exit(asyncio.run(_run_oneshot(args)))

    if args.web_only:
        asyncio.run(_run_web_only(args))
        return

    # Textual's app.run() manages its own event loop, so call it directly (not from asyncio.run)
    if _HAS_TEXTUAL and not args.no_tui:
        client, scheduler = _build(args)
        if args.web:
            _enable_web(client, scheduler)
        app = GridMonitorApp(client, scheduler, web_port=args.web_port if args.web else None)
        app.run()
        return

    asyncio.run(_run_cli(args))


def _build(args) -> tuple[GridClient, PollScheduler]:
    client = GridClient(args.url, timeout=args.timeout)
    client.verbose = args.verbose
    watcher = LogWatcher(args.trigger if args.trigger else TRIGGER_PHRASES)
    scheduler = PollScheduler(client, mode=args.mode, interval=args.interval,
                              watcher=watcher)
    return client, scheduler


def _enable_web(client: GridClient, scheduler: PollScheduler):
    import db
    import web_server
    db.init_db()
    web_server.set_scheduler(scheduler, history=True)
    client._web_enabled = True


async def _run_oneshot(args) -> int:
    """Run a single command (or a single poll) and report the outcome."""
    client, scheduler = _build(args)
    try:
        if args.configure:
            await scheduler.configure(args.configure[0], args.configure[1])
        if args.action:
            await scheduler.request_action(args.action)
        if args.set_voltage is not None:
            await scheduler.set_voltage(args.set_voltage)
        if args.verify:
            # Verification needs the server's current state first
            await scheduler.poll_once()
            status = await scheduler.request_verification(args.verify)
            print(f"Verification request sent to {args.verify} ({status.value}). "
                  f"Waiting for client report...")
        view = await scheduler.poll_once()
        print(scheduler.summary())
        return 0 if view is not None and view.online else 1
    except GridClientError as e:
        print(f"Error: {e}")
        return 2
    finally:
        await scheduler.stop()
        await client.aclose()


async def _run_cli(args):
    """Plain CLI mode: poll forever, print a summary whenever the picture changes."""
    client, scheduler = _build(args)
    last = {"key": None}

    def print_on_change(view):
        key = (view.online, tuple(
            (nv.node_id, nv.label, nv.verification) for nv in view.nodes))
        if key != last["key"]:
            last["key"] = key
            print(scheduler.summary())

    scheduler.add_listener(print_on_change)

    print("\n" + "=" * 50)
    print("  Grid Monitor")
    print("=" * 50)
    try:
        await scheduler.run()
    finally:
        await scheduler.stop()
        await client.aclose()


async def _run_web_only(args):
    """Run the poll loop with the web dashboard API only (no TUI)."""
    import uvicorn

    import web_server

    client, scheduler = _build(args)
    _enable_web(client, scheduler)

    print("\n" + "=" * 50)
    print("  Grid Monitor - Web Only Mode")
    print("=" * 50)
    print(f"  Polling:   {args.url} ({args.mode})")
    print(f"  API:       http://0.0.0.0:{args.web_port}/api/state")
    print(f"  WebSocket: ws://0.0.0.0:{args.web_port}/ws")
    print()

    scheduler.start()
    config = uvicorn.Config(
        web_server.app, host="0.0.0.0", port=args.web_port,
        log_level="info")
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        await scheduler.stop()
        await client.aclose()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nGoodbye!")
