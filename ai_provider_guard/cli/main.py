"""
CLI interface for AI Provider Guard.

Provides command-line access to provider configuration, one-shot generation
and the usage disclosure audit trail.
"""

import json
import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_provider_guard.config.loader import load_orchestrator_config
from ai_provider_guard.core.chat import parse_chat_request, to_chat_response
from ai_provider_guard.core.errors import (
    GuardrailBlocked,
    PersistenceError,
    RequestCancelled,
    ServiceUnavailable,
    ValidationError,
)
from ai_provider_guard.core.models import CancelSignal, UserContext
from ai_provider_guard.core.orchestrator import Orchestrator
from ai_provider_guard.providers.factory import build_client, check_health
from ai_provider_guard.storage.db import DEFAULT_DB_PATH
from ai_provider_guard.storage.repository import (
    SqliteDisclosureStore,
    SqliteModelCardStore,
    initialize_schema,
    seed_default_model_cards,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """AI Provider Guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print("AI Provider Guard - Use --help to see available commands")


@app.command()
def init(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
):
    """Create the database schema and seed the default model cards."""
    try:
        initialize_schema(db)
        cards = seed_default_model_cards(SqliteModelCardStore(db))
    except PersistenceError as e:
        console.print(f"[red]Error initializing database:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Database initialized at {db}")
    console.print(f"[green]✓[/] {len(cards)} model cards seeded")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def providers(
    config: str = typer.Option(..., "--config", "-c", help="Orchestrator YAML config"),
):
    """Show configured providers in fallback order."""
    try:
        orchestrator_config = load_orchestrator_config(config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Providers")
    table.add_column("Priority", justify="right")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Client")
    table.add_column("Max tokens", justify="right")
    table.add_column("Timeout (s)", justify="right")
    table.add_column("Cost/token", justify="right")

    for provider in orchestrator_config.registry().candidates():
        table.add_row(
            str(provider.priority),
            provider.id,
            provider.display_name,
            provider.model_name,
            provider.client,
            str(provider.max_tokens),
            f"{provider.request_timeout:g}",
            format(provider.cost_per_token, "f"),
        )

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def generate(
    message: str = typer.Argument(..., help="Question to ask"),
    config: str = typer.Option(..., "--config", "-c", help="Orchestrator YAML config"),
    framework: Optional[str] = typer.Option(None, "--framework", "-f",
                                            help="Compliance framework context"),
    user: str = typer.Option("cli", "--user", "-u", help="User id for the disclosure record"),
    consent: bool = typer.Option(False, "--consent", help="Record that the user consented"),
):
    """Run one request through the orchestrator and print the chat response."""
    try:
        orchestrator_config = load_orchestrator_config(config)
        db_path = orchestrator_config.storage.db_path
        initialize_schema(db_path)
        clients = {
            provider.id: build_client(provider)
            for provider in orchestrator_config.providers
        }
    except (FileNotFoundError, ValueError, PersistenceError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    orchestrator = Orchestrator.from_config(
        orchestrator_config,
        clients=clients,
        model_cards=SqliteModelCardStore(db_path),
        disclosures=SqliteDisclosureStore(db_path),
    )
    timeout = sum(p.request_timeout for p in orchestrator_config.providers)
    user_context = UserContext(user_id=user, user_consented=consent)

    try:
        payload = {"message": message}
        if framework:
            payload["framework"] = framework
        request = parse_chat_request(payload, CancelSignal.with_timeout(timeout))
        response = orchestrator.generate(request, user_context)
    except (GuardrailBlocked, RequestCancelled, ServiceUnavailable, ValidationError) as e:
        console.print(f"[red]{e}[/]")
        sys.exit(EXIT_CODE_FAIL)
    finally:
        orchestrator.close()

    if response.from_cache:
        console.print("[yellow]Served from cache while providers recover[/]")
    console.print(f"[dim]{response.provider_id} / {response.model_name}[/]")
    console.print_json(json.dumps(to_chat_response(response, framework)))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def health(
    config: str = typer.Option(..., "--config", "-c", help="Orchestrator YAML config"),
):
    """Send a minimal request to each provider and report which respond."""
    try:
        orchestrator_config = load_orchestrator_config(config)
        providers_by_id = {p.id: p for p in orchestrator_config.registry().candidates()}
        clients = {provider_id: build_client(p) for provider_id, p in providers_by_id.items()}
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    results = check_health(providers_by_id, clients)
    for provider_id, healthy in results.items():
        status = "[green]✓ healthy[/]" if healthy else "[red]✗ unavailable[/]"
        console.print(f"{provider_id}: {status}")

    # The service can answer while any one provider responds
    if any(results.values()):
        sys.exit(EXIT_CODE_PASS)
    console.print("[red]No provider is reachable[/]")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def disclosures(
    user: str = typer.Option(..., "--user", "-u", help="User id to list"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to show"),
):
    """Show recorded usage disclosures for a user, newest first."""
    try:
        records = SqliteDisclosureStore(db).list_for_user(user, limit=limit)
    except PersistenceError as e:
        console.print(f"[red]Error reading disclosures:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not records:
        console.print(f"\n[bold yellow]No usage disclosures found for {user}[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Usage disclosures for {user}")
    table.add_column("Created")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Consent")
    table.add_column("Cache")

    for record in records:
        table.add_row(
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.model_provider,
            record.model_name,
            str(record.tokens_used),
            f"${record.cost_estimate}",
            "yes" if record.user_consented else "no",
            "yes" if record.served_from_cache else "",
        )

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
