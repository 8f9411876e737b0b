"""CLI entry point for ticketdeck.

Commands:
- init: write a starter config file
- sync: refresh the local cache from Jira and save the offline snapshot
- show: print the cached tickets grouped by status, offline
- move: move a ticket to another status
- upload: create tickets in bulk from a CSV file
- serve: run the REST API
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ticketdeck.cache import Status, StatusSets, UnassignedGroup
from ticketdeck.config import (
    AppConfig,
    ConfigError,
    JiraConfig,
    config_path,
    load_config,
    save_config,
)
from ticketdeck.logging import LogSettings, setup_logging
from ticketdeck.mutation import MutationError, MutationState
from ticketdeck.mutation.upload import UploadPreview, read_upload, submit_upload, upload_report
from ticketdeck.persistence import SnapshotStore
from ticketdeck.runtime import TicketDeck

DEFAULT_SYNC_TIMEOUT = 300.0
DEFAULT_MOVE_TIMEOUT = 60.0
DEFAULT_UPLOAD_TIMEOUT = 600.0

config_option = click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.yml (default: ~/.config/ticketdeck/config.yml or $TICKETDECK_CONFIG)",
)
verbose_option = click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Also log to stderr",
)


def _load(config_file: Path | None) -> AppConfig:
    """Load the config or exit with a message."""
    try:
        config = load_config(config_file)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    if config is None:
        click.echo("No configuration found. Run 'ticketdeck init' first.", err=True)
        sys.exit(1)
    return config


def _print_groups(groups: list[tuple[str, list]], statuses: StatusSets) -> None:
    for label, tickets in groups:
        click.secho(f"{label} ({len(tickets)})", bold=True)
        for ticket in sorted(tickets, key=lambda t: t.key):
            assignee = ticket.assignee or "unassigned"
            known = statuses.is_active(ticket.status) or statuses.is_done(ticket.status)
            marker = "" if known else " ?"
            click.echo(f"  {ticket.key:<12} {ticket.summary}  [{assignee}]{marker}")


def _print_unassigned(groups: list[UnassignedGroup]) -> None:
    if not groups:
        click.echo("No unassigned tickets.")
        return
    for group in groups:
        heading = group.title if group.epic_key is None else f"{group.epic_key}  {group.title}"
        click.secho(f"{heading} (unassigned: {group.count})", bold=True)
        for ticket in group.tickets:
            click.echo(f"  {ticket.key:<12} {ticket.status.label:<14} {ticket.summary}")


def _print_preview(preview: UploadPreview) -> None:
    click.echo(
        f"{preview.total_rows} row(s): {preview.valid_rows} valid, "
        f"{preview.invalid_rows} invalid, {preview.warning_count} warning(s)"
    )
    for row in preview.rows:
        for error in row.errors:
            click.echo(f"  row {row.row_number}: error: {error}", err=True)
        for warning in row.warnings:
            click.echo(f"  row {row.row_number}: warning: {warning}")


@click.group()
@click.version_option(package_name="ticketdeck")
def main() -> None:
    """ticketdeck - fast Jira ticket viewer backed by a local cache."""
    pass


@main.command()
@config_option
@click.option("--project", required=True, help="Jira project key, e.g. ENG")
@click.option("--team-name", required=True, help="Team name used in JQL queries")
@click.option("--base-url", default="", help="Jira base URL for ticket links")
@click.option("--member", "members", multiple=True, help="Team member as 'Name=email' (repeatable)")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def init(
    config_file: Path | None,
    project: str,
    team_name: str,
    base_url: str,
    members: tuple[str, ...],
    force: bool,
) -> None:
    """Write a starter config file."""
    path = config_file or config_path()
    if path.exists() and not force:
        click.echo(f"Config already exists at {path} (use --force to overwrite)", err=True)
        sys.exit(1)

    team: dict[str, str] = {}
    for entry in members:
        name, sep, email = entry.partition("=")
        if not sep or not name.strip() or not email.strip():
            click.echo(f"Invalid --member '{entry}', expected 'Name=email'", err=True)
            sys.exit(1)
        team[name.strip()] = email.strip()

    config = AppConfig(
        jira=JiraConfig(project=project, team_name=team_name, base_url=base_url), team=team
    )
    written = save_config(config, path)
    click.echo(f"Config written to {written}")


@main.command()
@config_option
@verbose_option
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_SYNC_TIMEOUT,
    show_default=True,
    help="Seconds to wait for the refresh to finish",
)
def sync(config_file: Path | None, verbose: bool, timeout: float) -> None:
    """Refresh the cache from Jira and save the offline snapshot."""
    setup_logging(LogSettings.from_env(console=verbose))
    config = _load(config_file)

    with TicketDeck(config) as deck:
        cycle = deck.start(background=False)
        click.echo(f"Refreshing {config.jira.project} (cycle {cycle.id})...")
        finished = deck.wait_until(deck.idle, timeout)
        snapshot = deck.snapshot()
        last = deck.orchestrator.last_cycle
        notices = deck.events.notices()

    for notice in notices:
        click.echo(f"  {notice.data['level']}: {notice.data['message']}", err=True)
    if not finished:
        click.echo(f"Refresh did not finish within {timeout:g}s", err=True)
        sys.exit(1)

    click.echo(
        f"  {len(snapshot.active_tickets())} active, {len(snapshot.done_tickets())} done, "
        f"{len(snapshot.epics())} epics"
    )
    if last is not None and last.failed:
        click.echo(f"Failed stages: {', '.join(sorted(last.failed))}", err=True)
        sys.exit(1)
    click.echo("Done.")


@main.command()
@config_option
@click.option("--mine", is_flag=True, help="Only tickets assigned to you")
@click.option("--assignee", default=None, help="Only tickets assigned to this email")
@click.option("--unassigned", is_flag=True, help="Unassigned active tickets, grouped by epic")
def show(config_file: Path | None, mine: bool, assignee: str | None, unassigned: bool) -> None:
    """Print cached tickets grouped by status (no network access)."""
    config = _load(config_file)
    store = SnapshotStore(config.snapshot_dir)
    try:
        loaded = store.load(config.jira.project, config.statuses)
    finally:
        store.close()
    if loaded is None:
        click.echo("No snapshot yet. Run 'ticketdeck sync' first.", err=True)
        sys.exit(1)

    snapshot = loaded.snapshot
    if unassigned:
        click.echo(f"Snapshot saved {loaded.saved_at:%Y-%m-%d %H:%M} UTC")
        _print_unassigned(snapshot.unassigned_by_epic())
        return
    if mine:
        groups = snapshot.my_tickets_by_status()
    else:
        groups = snapshot.tickets_by_status(assignee_email=assignee)
    click.echo(f"Snapshot saved {loaded.saved_at:%Y-%m-%d %H:%M} UTC")
    if not groups:
        click.echo("No tickets.")
        return
    _print_groups(groups, snapshot.statuses)


@main.command()
@config_option
@verbose_option
@click.argument("key")
@click.argument("status")
@click.option("--resolution", default=None, help="Resolution to set when moving to a done status")
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_MOVE_TIMEOUT,
    show_default=True,
    help="Seconds to wait for the ticket and for Jira to confirm",
)
def move(
    config_file: Path | None,
    verbose: bool,
    key: str,
    status: str,
    resolution: str | None,
    timeout: float,
) -> None:
    """Move ticket KEY to STATUS (a label, or a one-letter shortcut like 'p')."""
    setup_logging(LogSettings.from_env(console=verbose))
    config = _load(config_file)
    try:
        target = Status.from_input(status)
    except ValueError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    if resolution is not None and resolution not in config.resolutions:
        click.echo(f"Unknown resolution '{resolution}'", err=True)
        sys.exit(1)

    with TicketDeck(config) as deck:
        deck.start(background=False)
        if not deck.wait_until(lambda: deck.store.get_ticket(key) is not None, timeout):
            click.echo(f"Ticket {key} not found", err=True)
            sys.exit(1)
        try:
            mutation = deck.mutations.move_status(key, target, resolution)
        except MutationError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        resolved = deck.wait_until(lambda: mutation.state is not MutationState.PENDING, timeout)

    if not resolved:
        click.echo(f"Jira did not confirm the move of {key} within {timeout:g}s", err=True)
        sys.exit(1)
    if mutation.state is MutationState.ROLLED_BACK:
        click.echo(f"Moving {key} failed: {mutation.error}", err=True)
        sys.exit(1)
    click.echo(f"{key} -> {target.label}")


@main.command()
@config_option
@verbose_option
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--dry-run", is_flag=True, help="Only validate the file and show the preview")
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_UPLOAD_TIMEOUT,
    show_default=True,
    help="Seconds to wait for the refresh and for Jira to create every ticket",
)
def upload(
    config_file: Path | None, verbose: bool, csv_file: Path, dry_run: bool, timeout: float
) -> None:
    """Create tickets from the rows of CSV_FILE.

    Columns: summary,type,assignee_email,epic_key,labels,description (only
    summary is required, labels are separated by "|"). Rows are checked
    against the refreshed cache first; rows with errors are skipped and
    possible duplicates only warned about.
    """
    setup_logging(LogSettings.from_env(console=verbose))
    config = _load(config_file)

    with TicketDeck(config) as deck:
        deck.start(background=False)
        if not deck.wait_until(lambda: not deck.orchestrator.refreshing, timeout):
            click.echo(f"Refresh did not finish within {timeout:g}s", err=True)
            sys.exit(1)
        try:
            preview = read_upload(csv_file, deck.store)
        except MutationError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        _print_preview(preview)
        if dry_run:
            return
        try:
            bulk = submit_upload(preview, deck.mutations)
        except MutationError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        finished = deck.wait_until(lambda: bulk.finished, timeout)
        results = upload_report(preview, bulk.summary())

    if not finished:
        click.echo(f"Jira did not confirm every creation within {timeout:g}s", err=True)
    for result in results:
        if result.created:
            click.echo(f"  row {result.row_number}: {result.key}  {result.summary}")
        else:
            reason = "skipped" if result.skipped else "failed"
            click.echo(f"  row {result.row_number}: {reason}: {result.error}", err=True)
    created = sum(1 for r in results if r.created)
    click.echo(f"Created {created} of {len(results)} ticket(s).")
    if created < len(results):
        sys.exit(1)


@main.command()
@config_option
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", type=int, default=8000, show_default=True, help="Port")
def serve(config_file: Path | None, host: str, port: int) -> None:
    """Run the REST API with a live cache."""
    import uvicorn  # noqa: PLC0415

    from ticketdeck.api.app import create_app  # noqa: PLC0415

    setup_logging()
    config = _load(config_file)
    deck = TicketDeck(config)
    deck.start(background=True)
    try:
        uvicorn.run(create_app(deck=deck), host=host, port=port, log_level="info")
    finally:
        deck.shutdown()


if __name__ == "__main__":
    main()
