"""Command-line interface for the bibliotheek.be loan monitor."""

from __future__ import annotations

import argparse
import asyncio
import csv
import sys
from typing import Optional

from rich.console import Console
from tabulate import tabulate

from bibliotheek_client import AuthError, BibliotheekClient, LibraryClientError

from bibliotheek_monitor.config import ConfigError, MonitorConfig
from bibliotheek_monitor.logging_config import configure_logging
from bibliotheek_monitor.models import (
    DaysChanged,
    Event,
    LoanExpiringSoon,
    LoanOverdue,
    Snapshot,
)
from bibliotheek_monitor.scheduler import PollingScheduler
from bibliotheek_monitor.service import LoanMonitor
from bibliotheek_monitor.storage import JsonFileStore

console = Console()

# Display truncation constants
MAX_TITLE_LEN = 55
MAX_USER_LEN = 18
MAX_LIBRARY_LEN = 18

Section = tuple[str, list[str], list[list[str]]]


def truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len, adding '...' suffix if needed."""
    if len(text) > max_len:
        return text[:max_len - 3] + "..."
    return text


def export_to_csv(sections: list[Section], filepath: str) -> None:
    """
    Export data to a CSV file with UTF-8 encoding (with BOM for Excel compatibility).

    Args:
        sections: List of tuples (section_name, headers, data)
        filepath: Output file path
    """
    with open(filepath, "w", encoding="utf-8-sig", newline="") as f:
        writer = csv.writer(f)
        for i, (section_name, headers, data) in enumerate(sections):
            if i > 0:
                # Add empty row between sections
                writer.writerow([])
            writer.writerow([section_name])
            writer.writerow(headers)
            writer.writerows(data)


def export_to_markdown(sections: list[Section], filepath: str) -> None:
    """
    Export data to a Markdown file with UTF-8 encoding.

    Args:
        sections: List of tuples (section_name, headers, data)
        filepath: Output file path
    """
    with open(filepath, "w", encoding="utf-8") as f:
        for i, (section_name, headers, data) in enumerate(sections):
            if i > 0:
                f.write("\n\n")
            f.write(f"## {section_name}\n\n")
            f.write(tabulate(data, headers=headers, tablefmt="github"))
            f.write("\n")


def loan_rows(snapshot: Snapshot) -> list[list[str]]:
    """Rows of the loans table, most urgent first."""
    rows = []
    for loan in snapshot.sorted_by_days_remaining():
        rows.append([
            loan.account_name or "Unknown",
            loan.library_name or "",
            loan.title,
            loan.due_date or "N/A",
            str(loan.days_remaining),
            "yes" if loan.is_extendable else "no",
        ])
    return rows


def reservation_rows(snapshot: Snapshot) -> list[list[str]]:
    return [
        [r.account_name or "Unknown", r.library_name or "", r.title, r.author or ""]
        for r in snapshot.reservations
    ]


def describe_event(event: Event) -> str:
    """One-line human readable description of an event."""
    if isinstance(event, DaysChanged):
        days = "no loans" if event.new_min is None else f"{event.new_min} day(s)"
        return f"Minimum days remaining is now {days} ({event.loan_count} loan(s))"
    if isinstance(event, LoanExpiringSoon):
        return f"Expiring soon: {event.loan.title} ({event.days_left} day(s) left)"
    if isinstance(event, LoanOverdue):
        return f"Overdue: {event.loan.title} ({event.days_overdue} day(s) overdue)"
    return str(event)


def print_event(event: Event) -> None:
    """Trigger sink for the command line."""
    style = "red" if isinstance(event, LoanOverdue) else "yellow"
    console.print(f"[{style}]{describe_event(event)}[/{style}]")


def build_config(args: argparse.Namespace) -> MonitorConfig:
    """Combine config file, environment and command-line flags (last wins)."""
    config = MonitorConfig()
    if args.config:
        config = MonitorConfig.from_file(args.config, base=config)
    config = MonitorConfig.from_env(base=config)
    return config.merged(
        username=args.username,
        password=args.password,
        poll_interval_minutes=args.interval,
        warning_threshold=args.threshold,
        store_path=args.store,
        log_level=args.log_level,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Monitor loans on bibliotheek.be and extend them before they are due",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Credentials from the environment
  export BIBLIOTHEEK_USERNAME=me@example.com
  export BIBLIOTHEEK_PASSWORD=secret
  bibliotheek-monitor --loans

  # Extend every loan due within 3 days
  bibliotheek-monitor --extend 3

  # Keep polling every 30 minutes and report changes
  bibliotheek-monitor --watch --interval 30

  # Personal lists and library contact details
  bibliotheek-monitor --lists --libraries

  # Export loans and reservations to Markdown
  bibliotheek-monitor --loans --reservations --output loans.md --format markdown

  # Config file format (monitor.json):
  # {"username": "me@example.com", "password": "secret",
  #  "poll_interval_minutes": 30, "warning_threshold": 7}
""",
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument("--config", "-c", help="Path to JSON config file")
    config_group.add_argument(
        "--username", "-u",
        help="E-mail address. Uses BIBLIOTHEEK_USERNAME env var if not provided.",
    )
    config_group.add_argument(
        "--password", "-p",
        help="Password. Uses BIBLIOTHEEK_PASSWORD env var if not provided.",
    )
    config_group.add_argument("--store", help="JSON file keeping the last snapshot")
    config_group.add_argument(
        "--threshold", "-t", type=int,
        help="Days left at or below which a loan counts as expiring soon (default: 7)",
    )
    config_group.add_argument("--log-level", help="Logging level (default: INFO)")

    action_group = parser.add_argument_group("Actions")
    action_group.add_argument("--loans", "-l", action="store_true", help="Show current loans")
    action_group.add_argument(
        "--reservations", "-r", action="store_true", help="Show current reservations",
    )
    action_group.add_argument("--lists", action="store_true", help="Show personal lists")
    action_group.add_argument(
        "--libraries", action="store_true", help="Show address and contact details of your libraries",
    )
    action_group.add_argument(
        "--extend", "-e", type=int, metavar="MAX_DAYS",
        help="Extend loans with at most MAX_DAYS days left",
    )
    action_group.add_argument(
        "--watch", "-w", action="store_true", help="Keep polling and report changes",
    )
    action_group.add_argument(
        "--interval", "-i", type=float, help="Minutes between polls with --watch (default: 30)",
    )

    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--output", "-o", help="Export results to file (supports CSV and Markdown)",
    )
    output_group.add_argument(
        "--format", "-f", choices=["csv", "markdown"], default="csv",
        help="Output file format: csv (default) or markdown",
    )
    return parser


def main() -> int:
    """Main entry point for the CLI."""
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        return 130


async def async_main(argv: Optional[list[str]] = None) -> int:
    """Async main function for the CLI."""
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.log_level)

    if not config.has_credentials:
        print("Error: Credentials required. Use --config, --username/--password,", file=sys.stderr)
        print("       or set BIBLIOTHEEK_USERNAME and BIBLIOTHEEK_PASSWORD.", file=sys.stderr)
        return 1

    actions = (args.loans, args.reservations, args.lists, args.libraries, args.extend is not None, args.watch)
    if not any(actions):
        args.loans = True

    store = JsonFileStore(config.resolved_store_path)

    async with BibliotheekClient(config.username, config.password, timeout=config.timeout) as client:
        monitor = LoanMonitor(
            client,
            store,
            sink=print_event,
            warning_threshold=config.warning_threshold,
            settle_delay=config.settle_delay,
        )

        if args.watch:
            return await watch(monitor, config)

        try:
            result = await monitor.refresh()
        except AuthError as e:
            print(f"Error: Login failed: {e}", file=sys.stderr)
            return 1
        except LibraryClientError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        snapshot = result.snapshot if result else monitor.previous
        if snapshot is None:
            print("Error: No loan data available", file=sys.stderr)
            return 1

        for account_id, view in snapshot.accounts.items():
            if view.detail_error:
                print(f"  Warning: {view.account.name or account_id}: {view.detail_error}", file=sys.stderr)

        if args.extend is not None:
            report = await monitor.extend_loans(args.extend)
            console.print(f"Extended {report.total_extended} loan(s)")
            for account_id, error in report.errors.items():
                print(f"  Warning: {account_id}: {error}", file=sys.stderr)
            snapshot = monitor.previous or snapshot

        export_sections: list[Section] = []

        if args.loans:
            export_sections.extend(show_loans(snapshot, config.warning_threshold))
        if args.reservations:
            export_sections.extend(show_reservations(snapshot))
        if args.lists:
            export_sections.extend(show_user_lists(snapshot))
        if args.libraries:
            export_sections.extend(await show_libraries(client, snapshot))

        if args.output and export_sections:
            if args.format == "csv":
                export_to_csv(export_sections, args.output)
            else:
                export_to_markdown(export_sections, args.output)
            console.print(f"Exported to {args.output}")

    return 0


def show_loans(snapshot: Snapshot, warning_threshold: int) -> list[Section]:
    """Print the loans table and return it as an export section."""
    print("## Current Loans")
    print()

    rows = loan_rows(snapshot)
    if not rows:
        print("No loans.")
        print()
        return []

    print(
        f"**Total: {snapshot.loan_count} loans, "
        f"{snapshot.expiring_soon(warning_threshold)} expiring soon, "
        f"min days: {snapshot.min_days_remaining}**"
    )
    print()

    headers = ["User", "Library", "Title", "Due Date", "Days Remaining", "Extendable"]
    display = [
        [truncate(r[0], MAX_USER_LEN), truncate(r[1], MAX_LIBRARY_LEN), truncate(r[2], MAX_TITLE_LEN), *r[3:]]
        for r in rows
    ]
    print(tabulate(display, headers=headers, tablefmt="github"))
    print()
    return [("Current Loans", headers, rows)]


def show_reservations(snapshot: Snapshot) -> list[Section]:
    """Print the reservations table and return it as an export section."""
    print("## Reservations")
    print()

    rows = reservation_rows(snapshot)
    if not rows:
        print("No reservations.")
        print()
        return []

    headers = ["User", "Library", "Title", "Author"]
    print(tabulate(rows, headers=headers, tablefmt="github"))
    print()
    return [("Reservations", headers, rows)]


def show_user_lists(snapshot: Snapshot) -> list[Section]:
    """Print the personal lists table and return it as an export section."""
    print("## Personal Lists")
    print()

    if not snapshot.user_lists:
        print("No lists.")
        print()
        return []

    headers = ["List", "Items", "Last Changed", "URL"]
    rows = [
        [user_list.name, str(user_list.num_items), user_list.last_changed or "", user_list.url]
        for user_list in snapshot.user_lists
    ]
    print(tabulate(rows, headers=headers, tablefmt="github"))
    print()
    return [("Personal Lists", headers, rows)]


async def show_libraries(client: BibliotheekClient, snapshot: Snapshot) -> list[Section]:
    """Fetch, print and return the contact details of every library."""
    print("## Libraries")
    print()

    rows = []
    for name, url in sorted(snapshot.libraries.items()):
        try:
            info = await client.get_library_details(url)
        except LibraryClientError as e:
            print(f"  Warning: {name}: {e}", file=sys.stderr)
            continue
        rows.append([name.capitalize(), info.address or "", info.phone or "", info.email or "", url])

    if not rows:
        print("No library details.")
        print()
        return []

    headers = ["Library", "Address", "Phone", "E-mail", "Website"]
    print(tabulate(rows, headers=headers, tablefmt="github"))
    print()
    return [("Libraries", headers, rows)]


async def watch(monitor: LoanMonitor, config: MonitorConfig) -> int:
    """Poll until interrupted, printing events as they happen."""
    scheduler = PollingScheduler(monitor.refresh, config.poll_interval_seconds)
    scheduler.start()
    console.print(f"Watching loans every {config.poll_interval_minutes:g} minutes (Ctrl+C to stop)")
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
