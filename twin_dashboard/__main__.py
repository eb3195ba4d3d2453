"""Command line entry point.

    python -m twin_dashboard serve [--host HOST] [--port PORT] [--reload]
    python -m twin_dashboard watch [--url URL] [--polling]
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from loguru import logger

from .config import Settings, configure_logging
from .sync_client import SyncClient


def _format_snapshot(agents: list) -> str:
    lines = [f"--- {len(agents)} agents ---"]
    for agent in agents:
        metrics = agent.get("metrics") or {}
        lines.append(
            f"{agent.get('id'):>3}  {agent.get('name', '?'):<20} {agent.get('status', '?'):<8} "
            f"handled={metrics.get('requests_handled', 0)} "
            f"success={metrics.get('success_rate', 0)} "
            f"avg={metrics.get('avg_response_time', 0)}"
        )
    return "\n".join(lines)


def serve(settings: Settings, reload: bool = False) -> None:
    import uvicorn

    uvicorn.run(
        "twin_dashboard.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=reload,
    )


async def watch(settings: Settings, url: Optional[str], polling: bool) -> None:
    client = SyncClient.from_settings(
        settings,
        base_url=url,
        realtime_enabled=settings.realtime_enabled and not polling,
    )
    client.subscribe(lambda agents: print(_format_snapshot(agents), flush=True))
    client.on_connection_change(
        lambda connected: logger.info("Connected" if connected else "Disconnected")
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    client.connect()
    try:
        await stop.wait()
    finally:
        await client.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="twin_dashboard", description="Digital twin dashboard")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Run the API and WebSocket server")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    watch_parser = sub.add_parser("watch", help="Print agent snapshots as they arrive")
    watch_parser.add_argument("--url", default=None, help="Server base URL, e.g. http://localhost:8000")
    watch_parser.add_argument("--polling", action="store_true", help="Skip the WebSocket and poll")

    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if args.command == "serve":
        if args.host:
            settings.host = args.host
        if args.port:
            settings.port = args.port
        serve(settings, reload=args.reload)
    else:
        try:
            asyncio.run(watch(settings, args.url, args.polling))
        except KeyboardInterrupt:
            pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
