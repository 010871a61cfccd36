# src/kotarchive/cli.py
"""
kot-archive Command Line Interface (CLI).

This module implements the terminal front-end using `typer` and `rich`. Every
command opens the archive store named by the settings (`KOT_STORAGE_BACKEND`,
`KOT_ARCHIVE_DIR`) and delegates to the services layer.

Features
--------
- **Archive Browser**: List, filter, sort and inspect archives by type and date.
- **Import / Export**: Single envelopes or bulk files, with per-item reporting.
- **Retention**: Apply the age/count policy to auto archives on demand.
- **Analytics**: Overview, win rates, decision patterns and insights.
- **Replay**: Play a game log back in real time, or instantly for inspection.

Usage
-----
    # Browse archives from the last week, oldest first
    $ kot-archive list --range week --order asc

    # Replay an archived game at double speed
    $ kot-archive replay gameLog_1718000000000_a1b2c3 --speed 2

    # Export everything into one bulk file
    $ kot-archive export --all -o backups/
"""

from __future__ import annotations

import asyncio
import traceback
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kotarchive.core.clock import utc_now
from kotarchive.core.collaborators import GameStateContainer
from kotarchive.core.contracts.archive import (
    ArchiveRecord,
    BulkItemError,
    BulkResult,
    DecisionTreePayload,
    GameLogPayload,
    RetentionPolicy,
)
from kotarchive.core.errors import ArchiveNotFoundError, KotArchiveError
from kotarchive.core.events import (
    AIDecisionMatched,
    EventBus,
    ReplayEnded,
    ReplayEntry,
    ReplayEventName,
)
from kotarchive.core.scheduler import AsyncioScheduler, ManualScheduler
from kotarchive.core.settings import Settings, load_settings
from kotarchive.services.analytics import AnalyticsEngine
from kotarchive.services.archive_store import ArchiveStore, open_archive_store
from kotarchive.services.decisions import DecisionQuery, DecisionTreeIndex
from kotarchive.services.query import ArchiveFilter, apply_filter
from kotarchive.services.replay import ReplayEngine

# Ensure env vars (like KOT_ARCHIVE_DIR) are loaded before any logic runs
load_dotenv()

app = typer.Typer(
    help="kot-archive: Browse, analyse and replay archived King of Tokyo sessions.",
    rich_markup_mode="markdown",
)
console = Console()


# --------------------------------------------------------------------------- #
# Helpers: Store & Lookup
# --------------------------------------------------------------------------- #


def _settings() -> Settings:
    return load_settings()


def _store() -> ArchiveStore:
    return open_archive_store(_settings())


def _require(store: ArchiveStore, archive_id: str) -> ArchiveRecord:
    """Resolve an id or exit with code 1."""
    record = store.find(archive_id)
    if record is None:
        console.print(f"[bold red]❌ Not found:[/bold red] no archive with id {archive_id}")
        raise typer.Exit(code=1)
    return record


def _fail(label: str, exc: BaseException, verbose: bool = False) -> typer.Exit:
    console.print(f"\n[bold red]❌ {label}:[/bold red] {exc}")
    if verbose:
        traceback.print_exc()
    return typer.Exit(code=1)


# --------------------------------------------------------------------------- #
# Helpers: Rendering
# --------------------------------------------------------------------------- #


def _render_records(records: list[ArchiveRecord], title: str) -> None:
    table = Table(title=title, show_lines=False)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Name")
    table.add_column("Date", style="dim")
    table.add_column("Size", justify="right")
    for record in records:
        table.add_row(
            record.id,
            record.category,
            record.name,
            f"{record.timestamp:%Y-%m-%d %H:%M:%S}",
            str(record.size_metric),
        )
    console.print(table)


def _render_bulk(result: BulkResult, verb: str) -> None:
    console.print(f"[bold green]✅ {verb} {result.success_count} archive(s).[/bold green]")
    for item in result.errors:
        console.print(f" [red]•[/red] {item.id}: {item.error}")


def _render_entry(payload: ReplayEntry, _event: ReplayEventName) -> None:
    entry = payload.entry
    stamp = f"{entry.timestamp:%H:%M:%S} " if entry.timestamp else ""
    console.print(
        f"[dim]{payload.index + 1:>4}/{payload.total}[/dim] {stamp}"
        f"[yellow]{entry.type:<8}[/yellow] {entry.message}"
    )


def _render_decision(payload: AIDecisionMatched, _event: ReplayEventName) -> None:
    decision = payload.decision
    console.print(
        f"      [blue]↳ AI {decision.get('action', '?')}[/blue] "
        f"(score {decision.get('score', '?')}) {decision.get('rationale', '')}"
    )


# --------------------------------------------------------------------------- #
# Commands: Browse
# --------------------------------------------------------------------------- #


@app.command("list")  # type: ignore[misc]
def list_archives(
    archive_type: Annotated[
        str,
        typer.Option("--type", "-t", help="all | gameLog | aidt | auto"),
    ] = "all",
    date_range: Annotated[
        str,
        typer.Option("--range", "-r", help="all | today | week | month"),
    ] = "all",
    search: Annotated[
        str,
        typer.Option("--search", "-s", help="Case-insensitive text over name, id and type."),
    ] = "",
    sort_by: Annotated[
        str,
        typer.Option("--sort", help="date | name | size | type"),
    ] = "date",
    order: Annotated[
        str,
        typer.Option("--order", help="asc | desc"),
    ] = "desc",
) -> None:
    """List archives with optional type, date and text filters."""
    try:
        criteria = ArchiveFilter.model_validate(
            {
                "type": archive_type,
                "date_range": date_range,
                "search": search,
                "sort_by": sort_by,
                "sort_order": order,
            }
        )
    except ValueError as e:
        raise _fail("Invalid filter", e) from e

    records = apply_filter(_store().list_all(), criteria, utc_now())
    if not records:
        console.print("[dim]No archives match.[/dim]")
        return
    _render_records(records, f"Archives ({len(records)})")


@app.command()  # type: ignore[misc]
def show(
    archive_id: Annotated[str, typer.Argument(help="Archive id (or auto-archive key).")],
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Number of log entries to print."),
    ] = 20,
) -> None:
    """Show the metadata, snapshot status and first entries of one archive."""
    store = _store()
    record = _require(store, archive_id)
    try:
        payload = store.load(record)
    except (KotArchiveError, ValueError) as e:
        raise _fail("Load Error", e) from e

    console.print(
        Panel.fit(
            f"[bold cyan]{payload.meta.name}[/bold cyan]\n"
            f"{record.category} · {payload.meta.timestamp:%Y-%m-%d %H:%M:%S} · "
            f"size {payload.meta.size_metric}\n"
            f"State snapshot: {'yes' if payload.state_snapshot else 'no'}",
            border_style="cyan",
        )
    )
    if isinstance(payload, GameLogPayload):
        for entry in payload.data[:limit]:
            console.print(f" [yellow]{entry.type:<8}[/yellow] {entry.message}")
        if len(payload.data) > limit:
            console.print(f" [dim]... {len(payload.data) - limit} more[/dim]")
    else:
        summary = DecisionTreeIndex.from_payload(payload).summary()
        console.print_json(data=summary.to_wire())


@app.command()  # type: ignore[misc]
def decisions(
    archive_id: Annotated[str, typer.Argument(help="Decision-tree archive id.")],
    player: Annotated[str | None, typer.Option("--player", "-p")] = None,
    action: Annotated[str | None, typer.Option("--action", "-a")] = None,
    min_score: Annotated[float | None, typer.Option("--min-score")] = None,
    faces: Annotated[str | None, typer.Option("--faces", help="e.g. '1,claw'")] = None,
) -> None:
    """Search the rolls of an archived decision tree."""
    store = _store()
    record = _require(store, archive_id)
    try:
        payload = store.load(record)
    except (KotArchiveError, ValueError) as e:
        raise _fail("Load Error", e) from e
    if not isinstance(payload, DecisionTreePayload):
        console.print("[bold red]❌ Not a decision-tree archive.[/bold red]")
        raise typer.Exit(code=1)

    query = DecisionQuery(player_name=player, action=action, min_score=min_score, faces=faces)
    hits = DecisionTreeIndex.from_payload(payload).search(query)
    table = Table(title=f"Decisions ({len(hits)})")
    for column in ("Round", "Turn", "Player", "Action", "Score", "Faces"):
        table.add_column(column)
    for row in hits:
        table.add_row(
            str(row.get("roundNumber", "")),
            str(row.get("turnNumber", "")),
            str(row.get("playerName", "")),
            str(row.get("action", "")),
            str(row.get("score", "")),
            str(row.get("faces", "")),
        )
    console.print(table)


@app.command()  # type: ignore[misc]
def stats() -> None:
    """Show storage usage of every archive-related key."""
    usage = _store().storage_stats()
    console.print(
        f"Keys: [cyan]{usage.archive_count}[/cyan]  "
        f"Total: [cyan]{usage.total_size}[/cyan] chars  "
        f"Average: [cyan]{usage.average_size:.0f}[/cyan]  "
        f"(~{usage.estimated_mb:.2f} MB)"
    )


# --------------------------------------------------------------------------- #
# Commands: Import / Export / Delete
# --------------------------------------------------------------------------- #


@app.command("import")  # type: ignore[misc]
def import_archive(
    file: Annotated[
        Path,
        typer.Argument(
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            help="Archive JSON file, single envelope or bulk export.",
        ),
    ],
) -> None:
    """Import an archive file; nothing is written if it does not validate."""
    outcome = _store().import_from_file(file)
    if outcome.is_err():
        error = outcome.unwrap_err()
        console.print(f"[bold red]❌ Import rejected:[/bold red] {error.reason}")
        raise typer.Exit(code=1)
    value = outcome.unwrap()
    if isinstance(value, BulkResult):
        _render_bulk(value, "Imported")
        if value.success_count == 0 and value.errors:
            raise typer.Exit(code=1)
        return
    console.print(f"[bold green]✅ Imported[/bold green] {value.meta.name} ({value.meta.id})")


@app.command()  # type: ignore[misc]
def export(
    archive_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Archive ids; several ids produce one bulk file."),
    ] = None,
    export_all: Annotated[
        bool,
        typer.Option("--all", help="Export every archive into one bulk file."),
    ] = False,
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Target file or directory."),
    ] = Path("."),
) -> None:
    """Export one archive as an envelope, or several as a bulk file."""
    store = _store()
    if export_all:
        records = store.list_all()
    else:
        records = [_require(store, archive_id) for archive_id in archive_ids or []]
    if not records:
        console.print("[dim]Nothing to export.[/dim]")
        raise typer.Exit(code=1)

    try:
        if export_all:
            path, result = store.export_bulk(records, output)
        else:
            written, result = store.export_selected(records, output)
            if written is None:
                _render_bulk(result, "Exported")
                raise typer.Exit(code=1)
            path = written
    except OSError as e:
        raise _fail("Export Error", e) from e

    _render_bulk(result, "Exported")
    console.print(
        Panel(f"Saved to: [link=file://{path}]{path}[/link]", title="Export", border_style="green")
    )


@app.command()  # type: ignore[misc]
def delete(
    archive_ids: Annotated[list[str], typer.Argument(help="One or more archive ids.")],
) -> None:
    """Delete archives; one failure never stops the rest."""
    store = _store()
    records: list[ArchiveRecord] = []
    missing = BulkResult()
    for archive_id in archive_ids:
        record = store.find(archive_id)
        if record is None:
            missing.errors.append(
                BulkItemError(id=archive_id, error=str(ArchiveNotFoundError(archive_id)))
            )
        else:
            records.append(record)
    result = store.delete_many(records)
    result.errors[:0] = missing.errors
    _render_bulk(result, "Deleted")
    if result.errors:
        raise typer.Exit(code=1)


@app.command()  # type: ignore[misc]
def prune(
    max_age_days: Annotated[
        float | None,
        typer.Option("--max-age-days", help="Override the retention age (days)."),
    ] = None,
    max_count: Annotated[
        int | None,
        typer.Option("--max-count", help="Override the per-type cap."),
    ] = None,
) -> None:
    """Apply the retention policy to auto archives of both content types."""
    base = RetentionPolicy.from_settings(_settings())
    policy = RetentionPolicy(
        max_age_days=max_age_days if max_age_days is not None else base.max_age_days,
        max_count_per_type=max_count if max_count is not None else base.max_count_per_type,
    )
    store = _store()
    for content_type in ("gameLog", "aidt"):
        report = store.prune(content_type, policy)
        console.print(
            f"[cyan]{content_type}[/cyan]: removed {len(report.removed_expired)} expired, "
            f"{len(report.removed_excess)} over cap, {report.remaining} remaining"
        )


# --------------------------------------------------------------------------- #
# Commands: Analytics & Replay
# --------------------------------------------------------------------------- #


@app.command()  # type: ignore[misc]
def analytics(
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the full aggregate as JSON."),
    ] = False,
) -> None:
    """Aggregate statistics and insights across recent archives."""
    engine = AnalyticsEngine(_store(), settings=_settings())
    if as_json:
        console.print_json(engine.export_json())
        return

    report = engine.calculate_complete_analytics()
    overview = report.overview
    console.rule("[bold]Overview[/bold]")
    console.print(
        f"Archives: {overview.total_archives}  Games: {overview.total_games}  "
        f"AI decisions: {overview.total_ai_decisions}  Players: {overview.unique_players}  "
        f"Avg duration: {overview.average_game_duration} min"
    )
    if report.performance.win_rates:
        console.rule("[bold]Win Rates[/bold]")
        for name, rate in report.performance.win_rates.items():
            console.print(f" • {name}: {rate.wins} wins ({rate.percentage}%)")
    if report.insights:
        console.rule("[bold]Insights[/bold]")
        colours = {"info": "cyan", "success": "green", "warning": "yellow"}
        for insight in report.insights:
            colour = colours[insight.level]
            console.print(f" [{colour}]{insight.title}[/{colour}]: {insight.message}")
    if report.skipped_archives:
        skipped = ", ".join(report.skipped_archives)
        console.print(f"[dim]Skipped unreadable archives: {skipped}[/dim]")


@app.command()  # type: ignore[misc]
def replay(
    archive_id: Annotated[str, typer.Argument(help="Game-log archive id.")],
    speed: Annotated[
        float,
        typer.Option("--speed", "-x", help="Playback speed multiplier (> 0)."),
    ] = 1.0,
    instant: Annotated[
        bool,
        typer.Option("--instant", help="Play every entry immediately, without delays."),
    ] = False,
    decisions_id: Annotated[
        str | None,
        typer.Option("--decisions", "-d", help="Decision-tree archive to correlate dice rolls."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show full error tracebacks for debugging."),
    ] = False,
) -> None:
    """
    Replay an archived game log entry by entry.

    When the archive carries a valid state snapshot, a standalone game state is
    hydrated from it first and the replay reports which state it started from.
    """
    store = _store()
    record = _require(store, archive_id)
    try:
        payload = store.load(record)
        tree = store.load(_require(store, decisions_id)) if decisions_id else None
    except (KotArchiveError, ValueError) as e:
        raise _fail("Load Error", e, verbose) from e
    if not isinstance(payload, GameLogPayload):
        console.print("[bold red]❌ Only game-log archives can be replayed.[/bold red]")
        raise typer.Exit(code=1)
    decision_tree: DecisionTreePayload | None = None
    if tree is not None:
        if not isinstance(tree, DecisionTreePayload):
            console.print("[bold red]❌ Not a decision-tree archive.[/bold red]")
            raise typer.Exit(code=1)
        decision_tree = tree

    console.print(
        Panel.fit(
            f"[bold magenta]kot-archive Replay[/bold magenta]\n"
            f"{payload.meta.name} · {len(payload.data)} entries · {speed}x",
            border_style="magenta",
        )
    )

    bus = EventBus()
    bus.on(ReplayEventName.ENTRY, _render_entry)
    bus.on(
        ReplayEventName.STATE_RESTORED,
        lambda _payload, _event: console.print("[green]State restored from snapshot.[/green]"),
    )
    bus.on(ReplayEventName.AI_DECISION, _render_decision)
    outcome: dict[str, Any] = {}
    bus.on(ReplayEventName.ENDED, lambda ended, _event: outcome.update(ended=ended))

    container = GameStateContainer()
    try:
        if instant:
            scheduler = ManualScheduler()
            engine = ReplayEngine(container, bus=bus, scheduler=scheduler, settings=_settings())
            engine.start_replay(payload, speed=speed, decisions=decision_tree)
            scheduler.run_until_idle()
        else:
            asyncio.run(_play_in_real_time(container, bus, payload, speed, decision_tree))
    except KeyboardInterrupt:
        console.print("\n[yellow]Replay interrupted.[/yellow]")
        raise typer.Exit(code=130) from None
    except (KotArchiveError, ValueError) as e:
        raise _fail("Replay Error", e, verbose) from e

    ended = outcome.get("ended")
    if isinstance(ended, ReplayEnded):
        console.print(
            f"\n[bold green]✅ Replay {ended.reason}[/bold green] ({ended.played}/{ended.total})"
        )


async def _play_in_real_time(
    container: GameStateContainer,
    bus: EventBus,
    payload: GameLogPayload,
    speed: float,
    decisions_index: DecisionTreePayload | None,
) -> None:
    """Drive the engine on the running loop until it emits ``ended``."""
    finished = asyncio.Event()
    bus.on(ReplayEventName.ENDED, lambda _payload, _event: finished.set())
    engine = ReplayEngine(container, bus=bus, scheduler=AsyncioScheduler(), settings=_settings())
    engine.start_replay(payload, speed=speed, decisions=decisions_index)
    try:
        await finished.wait()
    finally:
        engine.stop()


if __name__ == "__main__":
    app()
