"""
Lifelines CLI

Command-line interface for operating a Lifelines server database and for
driving a field client's offline outbox.

Usage:
    lifelines init --db lifelines.db
    lifelines serve --db lifelines.db --port 4000
    lifelines project list --db lifelines.db
    lifelines audit --db lifelines.db --limit 20
    lifelines score bids.json
    lifelines match proj_alnoor --db lifelines.db
    lifelines sync status --api http://127.0.0.1:4000/api --state client.db
    lifelines sync drain --email official@example.com --password official123 --state client.db
"""

import json
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from lifelines_core.bidding.scoring import CohortBaselines, rank_bids, rescore_cohort, score_breakdown
from lifelines_core.kernel.errors import LifelinesError
from lifelines_core.kernel.logging import configure_logging
from lifelines_core.kernel.settings import get_settings
from lifelines_core.kernel.snapshot_store import SQLiteSnapshotStore
from lifelines_core.lifecycle import commands, queries
from lifelines_core.lifecycle.models import Role
from lifelines_core.lifelines import Lifelines
from lifelines_core.sync.engine import SyncEngine
from lifelines_core.sync.transport import RemoteClient

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(json_output=False, log_level="WARNING")

app = typer.Typer(
    name="lifelines",
    help="Lifelines - reconstruction lifecycle and offline sync core",
    add_completion=False,
)

# Sub-apps
project_app = typer.Typer(help="Project inspection commands")
sync_app = typer.Typer(help="Field client outbox commands")

app.add_typer(project_app, name="project")
app.add_typer(sync_app, name="sync")

DEFAULT_DB = Path(".lifelines.db")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]
ApiOption = Annotated[Optional[str], typer.Option("--api", help="API base URL")]
StateOption = Annotated[
    Optional[Path], typer.Option("--state", help="Client state file (offline pack)")
]


def get_lifelines(db_path: Optional[Path] = None) -> Lifelines:
    """Open an existing server database"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'lifelines init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return Lifelines(db, seed=False)


def get_engine(api: Optional[str], state: Optional[Path]) -> SyncEngine:
    """Build a sync engine against a remote API"""
    settings = get_settings()
    remote = RemoteClient(api or settings.api_base_url, timeout=settings.remote_timeout_seconds)
    state = state or settings.client_state_path
    return SyncEngine(remote, snapshot_store=SQLiteSnapshotStore(state) if state else None)


def fail(error: LifelinesError) -> None:
    typer.echo(f"Error ({error.kind}): {error.message}", err=True)
    raise typer.Exit(1)


# Server commands


@app.command()
def init(
    db: Annotated[Path, typer.Option(help="Database path")] = DEFAULT_DB,
    seed: Annotated[bool, typer.Option(help="Load the demo dataset")] = True,
) -> None:
    """Initialize a new Lifelines database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    lifelines = Lifelines(db, seed=seed)
    lifelines.persist()
    typer.echo(f"✓ Initialized Lifelines database: {db}")
    typer.echo(f"  Actors: {lifelines.store.count('actors')}")
    typer.echo(f"  Projects: {lifelines.store.count('projects')}")


@app.command()
def seed(db: DbOption = None) -> None:
    """Load the demo dataset into an empty database"""
    lifelines = get_lifelines(db)
    if lifelines.store.count("actors"):
        typer.echo("Error: Database already holds data; use the admin reset instead", err=True)
        raise typer.Exit(1)
    lifelines.seed()
    typer.echo(f"✓ Seeded {lifelines.store.count('projects')} projects")


@app.command()
def serve(
    db: DbOption = None,
    host: Annotated[Optional[str], typer.Option(help="Interface to bind")] = None,
    port: Annotated[Optional[int], typer.Option(help="Port to listen on")] = None,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="JSON log output")] = False,
) -> None:
    """Run the HTTP API server"""
    from lifelines_core.server import initialize_server, run_server

    settings = get_settings()
    configure_logging(json_output=json_logs or settings.log_json, log_level=settings.log_level)
    lifelines = Lifelines(db or settings.db_path or DEFAULT_DB)
    initialize_server(lifelines)
    run_server(host=host or settings.host, port=port or settings.port)


# Project commands


@project_app.command("list")
def project_list(db: DbOption = None, json_output: JsonOption = False) -> None:
    """List all projects"""
    lifelines = get_lifelines(db)
    projects = lifelines.store.select("projects")

    if json_output:
        typer.echo(json.dumps([p.model_dump(mode="json") for p in projects], indent=2))
        return
    if not projects:
        typer.echo("No projects")
        return

    typer.echo(f"Projects ({len(projects)}):")
    for project in projects:
        typer.echo(f"  {project.id}: {project.title} [{project.status.value}, {project.visibility.value}]")


@project_app.command("show")
def project_show(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show a project with its plans, bids and license"""
    lifelines = get_lifelines(db)
    try:
        project = lifelines.store.require("projects", project_id)
    except LifelinesError as e:
        fail(e)
    admins = lifelines.store.select("actors", lambda a: a.role == Role.ADMIN)
    detail = queries.project_detail(lifelines.store, admins[0] if admins else None, project)

    if json_output:
        typer.echo(json.dumps(detail, indent=2, default=str))
        return

    typer.echo(f"{project.title} ({project.id})")
    typer.echo(f"  Status: {project.status.value}")
    typer.echo(f"  Visibility: {project.visibility.value}")
    typer.echo(f"  Location: {project.location.address} ({project.location.lat}, {project.location.lng})")
    typer.echo(f"  Plans: {len(detail['plans'])}")
    for bid in detail["bids"]:
        typer.echo(f"    Bid {bid['id']}: {bid['cost']:.0f} / {bid['timeline_months']} mo, score {bid['score']:.3f} [{bid['status']}]")
    if detail["license"]:
        typer.echo(f"  License: {detail['license']['id']} -> {detail['license']['contractor_id']}")


# Audit


@app.command()
def audit(
    db: DbOption = None,
    limit: Annotated[int, typer.Option(help="Number of records")] = 20,
    entity: Annotated[Optional[str], typer.Option(help="Only records about this entity")] = None,
    actor: Annotated[Optional[str], typer.Option(help="Only records by this actor")] = None,
    json_output: JsonOption = False,
) -> None:
    """Show the latest audit records, newest first"""
    lifelines = get_lifelines(db)
    records = lifelines.ledger.latest(limit, entity_id=entity, actor_id=actor)

    if json_output:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return
    for record in records:
        typer.echo(
            f"  #{record.seq} {record.timestamp.isoformat()} {record.action} "
            f"{record.entity_type}:{record.entity_id} by {record.actor_id or '-'}"
        )


# Scoring and matching previews


@app.command()
def score(
    bids_file: Annotated[Path, typer.Argument(help="JSON list of bids")],
    json_output: JsonOption = False,
) -> None:
    """Score a bid cohort without touching any database"""
    try:
        raw = json.loads(bids_file.read_text())
        bids = [commands.parse_command(commands.SubmitBid, b) for b in raw]
    except (OSError, ValueError) as e:
        typer.echo(f"Error: Cannot read bids: {e}", err=True)
        raise typer.Exit(1)
    except LifelinesError as e:
        fail(e)
    if not bids:
        typer.echo("No bids")
        return

    scores = rescore_cohort(bids)
    baselines = CohortBaselines.from_bids(bids)
    ranked = rank_bids(list(range(len(bids))), scores)
    rows = [
        {"index": i, "score": scores[i], **score_breakdown(bids[i], baselines).model_dump()}
        for i in ranked
    ]

    if json_output:
        typer.echo(json.dumps(rows, indent=2))
        return
    for rank, row in enumerate(rows, start=1):
        bid = bids[row["index"]]
        typer.echo(
            f"  {rank}. bid #{row['index']}: score {row['score']:.3f} "
            f"(cost {bid.cost:.0f}, {bid.timeline_months} mo, exp {bid.experience}, "
            f"{bid.recycled_percent}% recycled)"
        )


@app.command()
def match(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Match a project's latest plan against the resource inventory"""
    lifelines = get_lifelines(db)
    try:
        project = lifelines.store.require("projects", project_id)
        candidates = queries.matches_for_project(lifelines.store, project)
    except LifelinesError as e:
        fail(e)

    if json_output:
        typer.echo(json.dumps([c.model_dump(mode="json") for c in candidates], indent=2))
        return
    if not candidates:
        typer.echo("No matching resources")
        return
    for c in candidates:
        typer.echo(
            f"  {c.resource_id} ({c.resource_type}) {c.distance_km:.1f} km: "
            f"{c.usable_quantity:g} {c.unit}, saves {c.cost_savings:.0f}, CO2 -{c.co2_reduction_kg:.0f} kg"
        )


# Sync commands


@sync_app.command("status")
def sync_status(api: ApiOption = None, state: StateOption = None) -> None:
    """Probe the server and show the outbox"""
    engine = get_engine(api, state)
    engine.probe()
    status = engine.status()
    typer.echo(f"Online: {status['online']}")
    typer.echo(f"Queued: {status['queued']}")
    typer.echo(f"Dead letters: {status['dead_letters']}")
    for mutation in engine.queued():
        typer.echo(f"  {mutation.mutation_id}: {mutation.method} {mutation.path} ({mutation.operation})")


@sync_app.command("drain")
def sync_drain(
    email: Annotated[str, typer.Option("--email", help="Account email")],
    password: Annotated[str, typer.Option("--password", help="Account password")],
    api: ApiOption = None,
    state: StateOption = None,
) -> None:
    """Replay the outbox against the server"""
    engine = get_engine(api, state)
    try:
        engine.login(email, password)
    except LifelinesError as e:
        fail(e)
    report = engine.drain()
    typer.echo(f"Committed: {report.committed}")
    typer.echo(f"Rejected: {report.rejected}")
    typer.echo(f"Remaining: {report.remaining}")
    if report.interrupted:
        typer.echo("Drain interrupted; will resume on the next attempt")
        raise typer.Exit(2)


@sync_app.command("export")
def sync_export(
    output: Annotated[Path, typer.Argument(help="Where to write the offline pack")],
    api: ApiOption = None,
    state: StateOption = None,
) -> None:
    """Write the local replica and outbox to a JSON file"""
    engine = get_engine(api, state)
    output.write_text(json.dumps(engine.export_pack(), indent=2))
    typer.echo(f"✓ Exported offline pack: {output} ({len(engine.queue)} queued)")


@sync_app.command("import")
def sync_import(
    pack_file: Annotated[Path, typer.Argument(help="Offline pack JSON file")],
    api: ApiOption = None,
    state: StateOption = None,
) -> None:
    """Replace the local replica and outbox with a pack"""
    engine = get_engine(api, state)
    try:
        engine.import_pack(json.loads(pack_file.read_text()))
    except (OSError, ValueError) as e:
        typer.echo(f"Error: Cannot import pack: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"✓ Imported offline pack: {len(engine.queue)} queued")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
