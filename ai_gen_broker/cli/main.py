"""
CLI interface for the generation broker.

Provides command-line access to quota administration, generation and
interaction history, and starts the HTTP server.
"""

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_gen_broker.config.loader import BrokerConfig, load_broker_config
from ai_gen_broker.config.log_setup import configure_logging
from ai_gen_broker.core.errors import BrokerError, QuotaError
from ai_gen_broker.core.quota import QuotaLedger
from ai_gen_broker.core.service import GenerationService, create_generation_service
from ai_gen_broker.demo.seed_demo_data import seed_demo_data
from ai_gen_broker.storage.repository import UserRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_QUOTA = 2


def _config(ctx: typer.Context) -> BrokerConfig:
    return ctx.obj or BrokerConfig()


def _service(ctx: typer.Context) -> GenerationService:
    return create_generation_service(_config(ctx))


def _fail(exc: Exception) -> None:
    """Print an error and exit with the code matching its kind."""
    message = exc.message if isinstance(exc, BrokerError) else str(exc)
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_QUOTA if isinstance(exc, QuotaError) else EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
):
    """AI generation broker CLI."""
    try:
        ctx.obj = load_broker_config(config)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    configure_logging(ctx.obj.logging.level, console=Console(stderr=True))
    if ctx.invoked_subcommand is None:
        console.print("AI Generation Broker - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the broker database."""
    try:
        initialize_schema(_config(ctx).storage.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("add-user")
def add_user(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Quota tier (lowest tier if omitted)"),
):
    """Register a user with an empty daily budget."""
    config = _config(ctx)
    role = role or config.quota.default_role
    if role not in config.quota.tiers:
        console.print(f"[red]Error:[/] Unknown role '{role}'. Valid roles: {', '.join(config.quota.tiers)}")
        sys.exit(EXIT_CODE_FAIL)
    try:
        initialize_schema(config.storage.db_path)
        UserRepository(config.storage.db_path).create_user(user_id, role)
    except ValueError as e:
        _fail(e)
    console.print(f"[green]✓[/] Added user {user_id} ({role}, {config.quota.tiers[role]:,} tokens/day)")
    sys.exit(EXIT_CODE_OK)


@app.command()
def usage(ctx: typer.Context, user_id: str = typer.Argument(..., help="User identifier")):
    """Show a user's token usage and remaining daily budget."""
    config = _config(ctx)
    try:
        initialize_schema(config.storage.db_path)
        ledger = QuotaLedger(
            UserRepository(config.storage.db_path),
            tiers=config.quota.tiers,
            default_role=config.quota.default_role,
        )
        snapshot = ledger.get_usage(user_id)
    except BrokerError as e:
        _fail(e)

    table = Table(title=f"Token usage for {user_id}")
    table.add_column("Period")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Requests", justify="right")
    table.add_row(
        "Today", f"{snapshot.tokens_used:,}", f"{snapshot.limit:,}",
        f"{snapshot.remaining:,}", str(snapshot.request_count),
    )
    table.add_row(
        "This month", f"{snapshot.monthly_tokens_used:,}", "-", "-",
        str(snapshot.monthly_request_count),
    )
    table.add_row("All time", f"{snapshot.total_tokens_used:,}", "-", "-", str(snapshot.total_requests))
    console.print(table)
    console.print(f"Role: {snapshot.role}  Next reset: {snapshot.next_reset.isoformat()}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def generate(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    prompt: str = typer.Argument(..., help="What to generate or explain"),
    mode: str = typer.Option("generate", "--mode", "-m", help="generate or explain"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id used as context"),
):
    """Run one generation request through the full quota and fallback pipeline."""
    try:
        result = _service(ctx).generate(user_id, prompt, mode, project_id=project)
    except BrokerError as e:
        _fail(e)

    console.print(result.response, markup=False, highlight=False)
    console.print(
        f"\n[dim]model={result.model} strategy={result.strategy} "
        f"tokens={result.tokens_used.total_tokens} time={result.response_time_ms}ms "
        f"interaction={result.interaction_id}[/]"
    )
    sys.exit(EXIT_CODE_OK)


@app.command()
def history(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    page: int = typer.Option(1, "--page", help="Page number"),
    limit: int = typer.Option(20, "--limit", "-l", help="Page size"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="Filter by mode"),
    days: int = typer.Option(30, "--days", "-d", help="Look-back window in days"),
):
    """List a user's recent interactions, newest first."""
    try:
        listing = _service(ctx).history(user_id, page=page, limit=limit, mode=mode, since_days=days)
    except BrokerError as e:
        _fail(e)

    records = listing["interactions"]
    if not records:
        console.print("\n[bold yellow]No interactions found[/]\n")
        sys.exit(EXIT_CODE_OK)

    table = Table(title=f"Interactions for {user_id}")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Mode")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Tokens", justify="right")
    for record in records:
        table.add_row(
            record.interaction_id[:8],
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            record.mode,
            record.model,
            record.status.value,
            str(record.total_tokens),
        )
    console.print(table)
    pagination = listing["pagination"]
    console.print(f"Page {pagination['page']} of {pagination['pages']} ({pagination['total']} total)")
    sys.exit(EXIT_CODE_OK)


@app.command()
def stats(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    days: int = typer.Option(30, "--days", "-d", help="Look-back window in days"),
):
    """Summarize a user's interactions over a window."""
    try:
        summary = _service(ctx).stats(user_id, since_days=days)
    except BrokerError as e:
        _fail(e)

    console.print(f"\n[bold]AI Usage Stats[/bold] (last {summary['period_days']} days)")
    console.print("-" * 40)
    console.print(f"Interactions: {summary['total_interactions']}")
    console.print(f"Success rate: {summary['success_rate'] * 100:.1f}%")
    console.print(f"Total tokens: {summary['total_tokens_used']:,}")
    console.print(f"Avg response time: {summary['avg_response_time_ms']:.0f}ms")
    for mode_name, bucket in sorted(summary["by_mode"].items()):
        console.print(f"  {mode_name}: {bucket['count']} requests, {bucket['tokens']:,} tokens")
    sys.exit(EXIT_CODE_OK)


@app.command("seed-demo")
def seed_demo(ctx: typer.Context):
    """Insert a demo user and a public demo project."""
    try:
        seeded = seed_demo_data(_config(ctx).storage.db_path)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Demo user {seeded['user_id']} and project {seeded['project_id']} ready")
    sys.exit(EXIT_CODE_OK)


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
):
    """Start the HTTP API with uvicorn."""
    import uvicorn

    from ai_gen_broker.api.app import create_app

    uvicorn.run(create_app(_service(ctx)), host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
