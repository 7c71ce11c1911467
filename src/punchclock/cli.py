"""
src/punchclock/cli.py
Command line front-end: sign in, punch in or out, and review history.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .app import PunchClockApp
from .config import Settings, load_settings
from .display import (
    format_clock,
    format_day,
    format_duration,
    format_location,
    format_offset_minutes,
    format_shift_status,
)
from .errors import PunchClockError
from .logger import configure_from_env, debug_detail, set_log_profile, spinner
from .models import AttendanceEntry

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="punchclock", description="Clock in and out of work.")
    parser.add_argument("--env-file", default=None, help="Path to a .env file with defaults")
    parser.add_argument(
        "--log-profile",
        choices=["quiet", "user", "debug"],
        default=None,
        help="Console verbosity",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Sign in and remember the user")
    login.add_argument("--email", default=None)
    login.add_argument("--company", dest="company_id", default=None)
    login.add_argument("--password", default=None, help="Prompted for when omitted")

    sub.add_parser("logout", help="Forget the stored user")
    sub.add_parser("status", help="Show whether you are clocked in")
    sub.add_parser("in", help="Punch in")
    sub.add_parser("out", help="Punch out")
    sub.add_parser("toggle", help="Punch out if clocked in, otherwise punch in")

    history = sub.add_parser("history", help="Show attendance history")
    history.add_argument("--limit", type=int, default=20)
    return parser


def _require(value: Optional[str], prompt: str) -> str:
    if value:
        return value
    entered = input(f"{prompt}: ").strip()
    if not entered:
        raise SystemExit(f"{prompt} is required")
    return entered


async def _login(app: PunchClockApp, args: argparse.Namespace) -> None:
    settings = app.settings
    email = _require(args.email or settings.email, "Email")
    company_id = _require(args.company_id or settings.company_id, "Company ID")
    password = args.password or getpass.getpass("Password: ")
    identity = await app.login(email, password, company_id)
    console.print(f"Welcome, [bold]{identity.name or identity.email}[/bold]!")


async def _status(app: PunchClockApp) -> None:
    engine = app.engine
    session = await engine.check_status()
    if session is None:
        console.print(f"[dim]Not clocked in[/dim] · {format_day(datetime.now(tz=timezone.utc))}")
        return
    console.print(
        f"[green]Currently working[/green] since {format_clock(session.punch_in_at)} "
        f"({format_duration(engine.elapsed())})"
    )


async def _punch(app: PunchClockApp, command: str) -> None:
    engine = app.engine
    await engine.check_status()
    if command == "toggle":
        command = "out" if engine.current_session is not None else "in"

    if command == "in":
        async with spinner("Punching in"):
            session = await engine.punch_in()
        console.print(f"Clocked in at [bold]{format_clock(session.punch_in_at)}[/bold]")
        return

    async with spinner("Punching out"):
        closed = await engine.punch_out()
    if closed is None:
        console.print("Clocked out (no local session was open to record)")
    else:
        console.print(
            f"Clocked out at [bold]{format_clock(closed.punch_out_at)}[/bold] "
            f"after {format_duration(closed.duration())}"
        )


def render_history(entries: Sequence[AttendanceEntry], limit: int) -> Table:
    table = Table(title="Attendance history")
    table.add_column("Date")
    table.add_column("Clock in")
    table.add_column("Clock out")
    table.add_column("Standing")
    table.add_column("Hours", justify="right")
    table.add_column("Location")
    for entry in list(entries)[: max(limit, 0)]:
        clock_in = format_clock(entry.clock_in)
        shift_in = format_shift_status(entry.clock_in_shift_status)
        if shift_in:
            clock_in += f" {shift_in} {format_offset_minutes(entry.clock_in_shift_time_difference_minutes)}".rstrip()
        if entry.clock_out is None:
            clock_out = "Not clocked out"
        else:
            clock_out = format_clock(entry.clock_out)
            shift_out = format_shift_status(entry.clock_out_shift_status)
            if shift_out:
                clock_out += f" {shift_out} {format_offset_minutes(entry.clock_out_shift_time_difference_minutes)}".rstrip()
        table.add_row(
            entry.date or format_day(entry.clock_in),
            clock_in,
            clock_out,
            entry.standing.upper() if entry.standing else "UNKNOWN",
            f"{entry.working_hours:g}",
            format_location(entry.location),
        )
    return table


async def _history(app: PunchClockApp, limit: int) -> None:
    entries = await app.engine.fetch_history()
    if not entries:
        console.print("[dim]No attendance records yet[/dim]")
        return
    console.print(render_history(entries, limit))


async def run(args: argparse.Namespace, settings: Settings) -> None:
    async with PunchClockApp(settings) as app:
        if args.command == "login":
            await _login(app, args)
        elif args.command == "logout":
            await app.logout()
            console.print("Signed out")
        elif args.command == "status":
            await _status(app)
        elif args.command in {"in", "out", "toggle"}:
            await _punch(app, args.command)
        elif args.command == "history":
            await _history(app, args.limit)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env_file)
    configure_from_env()
    if args.log_profile:
        set_log_profile(args.log_profile)
    debug_detail(f"Running command {args.command!r} against {settings.api_url}")
    try:
        asyncio.run(run(args, settings))
    except PunchClockError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
