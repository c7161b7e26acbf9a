"""
CLI interface for content-flow.

Provides command-line access to generation, review history, usage and the
response cache.
"""

import dataclasses
import os
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from content_flow.config.loader import (
    CacheBackendKind,
    CacheConfig,
    ContentFlowConfig,
    LedgerBackendKind,
    RateLimitConfig,
    default_config,
    load_config,
)
from content_flow.core.errors import ContentFlowError, NotFound
from content_flow.core.history import HistoryFilter
from content_flow.core.requests import NormalizedRequest
from content_flow.core.service import ContentFlow
from content_flow.logging.logger import setup_logging
from content_flow.storage.db import DEFAULT_DB_PATH, initialize_schema
from content_flow.storage.documents import SqliteDocumentStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_ENV = "CONTENT_FLOW_CONFIG"


def _resolve_config(config_path: Optional[str], db_path: Optional[str]) -> ContentFlowConfig:
    """Load the YAML config, or fall back to the mock provider.

    Without a config file the cache and the ledger live in the database, so
    state survives between CLI invocations.
    """
    config_path = config_path or os.environ.get(CONFIG_ENV)
    if config_path:
        config = load_config(config_path)
        if db_path:
            config = dataclasses.replace(config, database_path=db_path)
        return config

    config = default_config(db_path or DEFAULT_DB_PATH)
    return dataclasses.replace(
        config,
        cache=CacheConfig(backend=CacheBackendKind.SQLITE),
        rate_limits=RateLimitConfig(backend=LedgerBackendKind.SQLITE),
    )


def _build_service(config: ContentFlowConfig) -> ContentFlow:
    return ContentFlow.from_config(config, documents=SqliteDocumentStore(config.database_path))


ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML configuration file")
DbOption = typer.Option(None, "--db", help="SQLite database path (overrides the config)")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """content-flow CLI."""
    setup_logging(
        "content-flow-cli",
        level=os.environ.get("LOG_LEVEL", "WARNING"),
        stream=sys.stderr,
    )
    if ctx.invoked_subcommand is None:
        console.print("content-flow - Use --help to see available commands")


@app.command()
def init(db: Optional[str] = DbOption):
    """Initialize the content-flow database."""
    try:
        initialize_schema(db or DEFAULT_DB_PATH)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(config: Optional[str] = ConfigOption, db: Optional[str] = DbOption):
    """Show the effective configuration."""
    try:
        cfg = _resolve_config(config, db)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Providers")
    table.add_column("ID")
    table.add_column("Kind")
    table.add_column("Model")
    table.add_column("Role")
    for provider_id, provider in sorted(cfg.providers.items()):
        role = ""
        if provider_id == cfg.default_provider:
            role = "default"
        elif provider_id == cfg.fallback_provider:
            role = "fallback"
        table.add_row(provider_id, provider.kind, provider.model or "provider default", role)
    console.print(table)

    console.print(f"Database: {cfg.database_path}")
    cache_state = cfg.cache.backend.value if cfg.cache.enabled else "disabled"
    console.print(f"Cache: {cache_state} (ttl {cfg.cache.ttl_seconds}s)")
    limits = cfg.rate_limits
    console.print(
        f"Quotas: {limits.requests_per_window or 'unlimited'} requests / {limits.window_seconds}s, "
        f"{limits.daily_token_cap or 'unlimited'} tokens / day ({limits.backend.value})"
    )
    console.print(f"Retries: {cfg.max_retries} (backoff {cfg.retry_backoff_seconds}s)")
    sys.exit(EXIT_CODE_PASS)


@app.command("test-provider")
def test_provider(
    provider_id: Optional[str] = typer.Argument(None, help="Provider id (defaults to the default provider)"),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Check that a provider accepts its credentials and answers."""
    try:
        service = _build_service(_resolve_config(config, db))
        check = service.test_provider(provider_id)
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not check.ok:
        console.print(f"[red]✗[/] {check.provider_id}: {check.error_kind}: {check.message}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] {check.provider_id}: {check.message} ({check.model}, {check.latency_ms:.0f}ms)")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def generate(
    text: str = typer.Argument(..., help="Prompt to generate from, or content to improve"),
    improve: Optional[str] = typer.Option(
        None,
        "--improve",
        "-i",
        help="Improve TEXT instead of generating (grammar, style, clarity, engagement, seo)"
    ),
    subject: str = typer.Option("cli", "--subject", "-s", help="Subject charged for quota"),
    temperature: float = typer.Option(0.7, "--temperature", "-t"),
    max_tokens: int = typer.Option(1000, "--max-tokens", "-m"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider id to try first"),
    document: Optional[str] = typer.Option(
        None, "--document", "-d", help="Store the result as a suggestion for this document"
    ),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Run a generate or improve request through the orchestrator."""
    try:
        service = _build_service(_resolve_config(config, db))
        if improve:
            request = NormalizedRequest.improve(
                text,
                improvement_type=improve,
                temperature=temperature,
                max_tokens=max_tokens,
                provider_hint=provider,
            )
        else:
            request = NormalizedRequest.generate(
                text, temperature=temperature, max_tokens=max_tokens, provider_hint=provider
            )
        outcome = service.generate_or_improve_detailed(request, subject)
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    result = outcome.result
    source = "cache" if outcome.cached else f"{outcome.provider_id} ({outcome.attempts} attempt(s))"
    # Generated text is printed verbatim, never parsed as markup
    console.print(result.content, markup=False, highlight=False)
    console.print(
        f"\n[dim]{result.model} via {source}, "
        f"{result.token_usage.total_tokens} tokens[/]"
    )

    if document:
        try:
            documents = service.suggestions.documents
            try:
                documents.get_document(document)
            except NotFound:
                documents.create_document(document, text if improve else "")
            suggestion = service.create_suggestion(
                result,
                target_document_id=document,
                author_id=subject,
                original_content=text if improve else "",
            )
        except ContentFlowError as e:
            console.print(f"[red]Error storing suggestion:[/] {e}")
            sys.exit(EXIT_CODE_FAIL)
        console.print(f"[green]✓[/] Suggestion {suggestion.id} created for {document}")
    sys.exit(EXIT_CODE_PASS)


def _decide(suggestion_id: int, actor: str, config: Optional[str], db: Optional[str], accept: bool):
    try:
        service = _build_service(_resolve_config(config, db))
        if accept:
            suggestion = service.accept_suggestion(suggestion_id, actor)
        else:
            suggestion = service.reject_suggestion(suggestion_id, actor)
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Suggestion {suggestion.id} {suggestion.status.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def accept(
    suggestion_id: int = typer.Argument(...),
    actor: str = typer.Option("cli", "--actor", "-a"),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Accept a pending suggestion and merge it into its document."""
    _decide(suggestion_id, actor, config, db, accept=True)


@app.command()
def reject(
    suggestion_id: int = typer.Argument(...),
    actor: str = typer.Option("cli", "--actor", "-a"),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Reject a pending suggestion."""
    _decide(suggestion_id, actor, config, db, accept=False)


@app.command()
def history(
    document_id: str = typer.Argument(...),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Show the change history of a document."""
    try:
        service = _build_service(_resolve_config(config, db))
        entries = service.get_history(document_id, HistoryFilter(limit=limit))
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not entries:
        console.print(f"\n[bold yellow]No history recorded for {document_id}[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"History of {document_id}")
    table.add_column("#", justify="right")
    table.add_column("Change")
    table.add_column("Actor")
    table.add_column("Words", justify="right")
    table.add_column("Similarity", justify="right")
    table.add_column("Description")
    table.add_column("When")
    for entry in entries:
        table.add_row(
            str(entry.sequence_number),
            entry.change_kind.value,
            entry.actor_id,
            f"{entry.diff.word_delta:+d}",
            f"{entry.diff.similarity:.0%}",
            entry.diff.description,
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def stats(
    document_id: str = typer.Argument(...),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Summarize the change history of a document."""
    try:
        service = _build_service(_resolve_config(config, db))
        summary = service.statistics(document_id)
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Document:[/bold] {document_id}")
    console.print(f"Total changes: {summary['total_changes']}")
    console.print(f"Tokens used: {summary['total_tokens']:,}")
    for kind, count in sorted(summary["by_change_kind"].items()):
        console.print(f"  {kind}: {count}")
    if summary["contributors"]:
        console.print(f"Contributors: {', '.join(summary['contributors'])}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def usage(
    subject_id: str = typer.Argument(...),
    config: Optional[str] = ConfigOption,
    db: Optional[str] = DbOption,
):
    """Show quota usage and spend for a subject."""
    try:
        service = _build_service(_resolve_config(config, db))
        summary = service.usage_summary(subject_id)
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Quota usage for {subject_id}")
    table.add_column("Dimension")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Resets in", justify="right")
    for dimension, window in summary["windows"].items():
        table.add_row(
            dimension,
            f"{window['used']:,}",
            f"{window['limit']:,}",
            f"{window['remaining']:,}",
            f"{window['resets_in']:.0f}s",
        )
    console.print(table)

    totals = summary["totals"]
    console.print(f"Requests: {totals['total_requests']} ({totals['failed_requests']} failed)")
    console.print(f"Tokens: {totals['total_tokens']:,}")
    console.print(f"Estimated cost: {_format_currency(totals['total_cost'])}")
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-flush")
def cache_flush(config: Optional[str] = ConfigOption, db: Optional[str] = DbOption):
    """Remove every cached response."""
    try:
        service = _build_service(_resolve_config(config, db))
        flushed = service.flush_cache()
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not flushed:
        console.print("[red]Cache backend unavailable, nothing flushed[/]")
        sys.exit(EXIT_CODE_FAIL)
    console.print("[green]✓[/] Cache flushed")
    sys.exit(EXIT_CODE_PASS)


@app.command("cache-cleanup")
def cache_cleanup(config: Optional[str] = ConfigOption, db: Optional[str] = DbOption):
    """Remove expired cached responses and show what remains."""
    try:
        service = _build_service(_resolve_config(config, db))
        removed = service.cleanup_cache()
        stats = service.cache_stats()
    except (ContentFlowError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Removed {removed} expired cache entries")
    remaining = "unknown" if stats.size is None else str(stats.size)
    console.print(f"Cache: {stats.backend}, {remaining} entries remaining")
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${abs(amount):,.4f}"


if __name__ == "__main__":
    app()
