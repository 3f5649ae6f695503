"""Command-line entry for hallcal.

``python -m hallcal`` runs the HTTP API; ``--agenda`` fetches every feed
once and prints a week's day buckets instead.
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import sys
from typing import NoReturn, Optional, TextIO

from . import _init_logging, run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the hallcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="hallcal",
        description="Hallway calendar - merged week view of several ICS feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m hallcal                          # Start API server on default port (8080)
  python -m hallcal --port 3000              # Start API server on port 3000
  python -m hallcal --agenda                 # Print this week's agenda and exit
  python -m hallcal --agenda --week-offset 1 # Print next week's agenda
        """,
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="YAML config file (default: $HALLCAL_CONFIG or ./config.yaml)",
    )
    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or from HALLCAL_WEB_PORT env var)",
    )
    parser.add_argument(
        "--agenda",
        action="store_true",
        help="Fetch all feeds once, print the week's events by day and exit",
    )
    parser.add_argument(
        "--week-offset",
        type=int,
        default=0,
        metavar="N",
        help="With --agenda: weeks relative to the current one (negative for past)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def format_agenda(view, local_tz: datetime.tzinfo) -> str:
    """Render a WeekView as plain text, one section per day."""
    lines = [f"Week of {view.week_start.isoformat()}"]
    for key in view.date_keys:
        day = datetime.date.fromisoformat(key)
        lines.append("")
        lines.append(f"{day.strftime('%a')} {key}")
        events = view.days.get(key, [])
        if not events:
            lines.append("  (no events)")
        for event in events:
            if event.all_day:
                when = "all day    "
            else:
                start = event.start.astimezone(local_tz).strftime("%H:%M")
                end = event.end.astimezone(local_tz).strftime("%H:%M")
                when = f"{start}-{end}"
            suffix = f" @ {event.location}" if event.location else ""
            lines.append(f"  {when}  {event.title} [{event.feed_name}]{suffix}")
    if view.error:
        lines.append("")
        lines.append(view.error)
    return "\n".join(lines)


async def print_agenda(args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Fetch every feed once and print the selected week. Returns an exit code."""
    from .config_loader import load_config
    from .http_client import close_all_clients
    from .logging_config import configure_logging
    from .server import build_service
    from .week_bucketizer import shift_week

    out = out or sys.stdout
    cfg = load_config(args.config)
    configure_logging(debug_mode=cfg.debug or args.debug, log_level=cfg.log_level)
    service, _store = build_service(cfg)
    try:
        await service.refresh_all()
        week_start = shift_week(service.week_start, args.week_offset)
        print(format_agenda(service.week_view(week_start), service.local_tz), file=out)
    finally:
        await service.stop()
        await close_all_clients()
    # Non-zero only when every configured feed failed
    failed = service.failed_feeds()
    return 1 if failed and len(failed) == len(service.feeds) else 0


def main() -> NoReturn:
    """Run the hallcal CLI."""
    parser = _create_parser()
    args = parser.parse_args()

    if args.agenda:
        _init_logging("DEBUG" if args.debug else "WARNING")
        try:
            sys.exit(asyncio.run(print_agenda(args)))
        except KeyboardInterrupt:
            sys.exit(130)

    run_server(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
