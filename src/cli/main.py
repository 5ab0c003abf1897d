"""Directive Engine CLI entry point."""

import logging
from pathlib import Path

import typer

from directive_engine.config import build_engine_config, load_config
from directive_engine.errors import ConfigurationError
from directive_engine.health_check import get_health_status
from directive_engine.service import VALID_MODES, DirectiveQueryService

from . import __version__
from .console import (
    console,
    create_table,
    print_error,
    print_markdown,
    print_panel,
    print_success,
    print_warning,
    styled_status,
)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

app = typer.Typer(
    name="directive-engine",
    help="Directive Engine - context-aware project rules for AI coding assistants",
    no_args_is_help=True,
)

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to directive-engine.yaml")
DIRECTIVES_OPTION = typer.Option(
    None, "--directives", "-d", help="Directory of YAML rule files (overrides config)"
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"directive-engine version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show INFO-level logs"),
) -> None:
    """Directive Engine - context-aware project rules for AI coding assistants."""
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING, format=LOG_FORMAT)


def build_service(
    config_path: str | None = None, directives: Path | None = None
) -> DirectiveQueryService:
    """Load configuration and build a query service, exiting with code 1 on bad config."""
    try:
        engine_config = build_engine_config(load_config(config_path))
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)
    return DirectiveQueryService.from_config(engine_config, directives_path=directives)


@app.command(name="query")
def query_command(
    task: str = typer.Argument(..., help="Task description"),
    mode: str | None = typer.Option(
        None, "--mode", "-m", help=f"Focus mode: {', '.join(VALID_MODES)}"
    ),
    max_items: int | None = typer.Option(None, "--max-items", "-n", help="Maximum directives (1-100)"),
    token_budget: int | None = typer.Option(
        None, "--token-budget", "-b", help="Token budget (100-10000)"
    ),
    strict_layer: bool = typer.Option(False, "--strict-layer", help="Only directives of the detected layer"),
    show_diagnostics: bool = typer.Option(False, "--diagnostics", help="Show query diagnostics"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
    config: str | None = CONFIG_OPTION,
    directives: Path | None = DIRECTIVES_OPTION,
) -> None:
    """Retrieve the directives relevant to a task."""
    service = build_service(config, directives)
    try:
        result = service.query_directives(
            task,
            max_items=max_items,
            token_budget=token_budget,
            strict_layer=strict_layer,
            mode=mode,
        )
    finally:
        service.close()

    if as_json:
        console.print_json(data=result)
        raise typer.Exit(1 if "error" in result else 0)

    if "error" in result:
        print_warning(f"Returned fallback context: {result['error']}")

    print_markdown(result["context_block"])

    if result["citations"]:
        table = create_table("Sources")
        table.add_column("Rule", style="cyan")
        table.add_column("Section", style="green")
        table.add_column("Layer", style="magenta")
        for citation in result["citations"]:
            table.add_row(citation["rule_name"], citation["section"], citation["layer"] or "*")
        console.print(table)

    if show_diagnostics:
        diagnostics = result["diagnostics"]
        lines = [f"{key}: {value}" for key, value in diagnostics.items()]
        print_panel("Diagnostics", "\n".join(lines), style="dim")

    if "error" in result:
        raise typer.Exit(1)


@app.command(name="detect")
def detect_command(
    text: str = typer.Argument(..., help="Task description"),
    keywords: bool = typer.Option(False, "--keywords", "-k", help="Include matched keywords"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
    config: str | None = CONFIG_OPTION,
) -> None:
    """Detect the architectural layer and topics of a task."""
    service = build_service(config)
    try:
        result = service.detect_context(text, return_keywords=keywords)
    finally:
        service.close()

    if as_json:
        console.print_json(data=result)
        return

    table = create_table("Detected Context")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Layer", result["detected_layer"])
    table.add_row("Topics", ", ".join(result["topics"]) or "-")
    table.add_row("Confidence", f"{result['confidence']:.2f}")
    table.add_row("Provider", result.get("model_provider") or "-")
    if keywords:
        table.add_row("Keywords", ", ".join(result["keywords"]) or "-")
        table.add_row("Technologies", ", ".join(result["technologies"]) or "-")
    console.print(table)


@app.command(name="health")
def health_command(
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON"),
    config: str | None = CONFIG_OPTION,
    directives: Path | None = DIRECTIVES_OPTION,
) -> None:
    """Check providers, directive store and configuration."""
    service = build_service(config, directives)
    try:
        status = get_health_status(service.coordinator, service.store, config)
    finally:
        service.close()

    if as_json:
        console.print_json(data=status)
    else:
        table = create_table(f"Health: {status['overall']}")
        table.add_column("Component", style="cyan")
        table.add_column("Status")
        table.add_column("Details", style="dim")
        for component in ("providers", "directives", "config"):
            check = status[component]
            table.add_row(component, styled_status(check.get("status")), check.get("reason", ""))
        console.print(table)
        console.print(f"\n[dim]Checked at {status['timestamp']}[/dim]")
        if status["overall"] == "healthy":
            print_success("All checks passed")

    if status["overall"] == "unhealthy":
        raise typer.Exit(1)


@app.command(name="serve")
def serve_command(
    config: str | None = CONFIG_OPTION,
    no_watch: bool = typer.Option(False, "--no-watch", help="Disable automatic reload"),
) -> None:
    """Run the MCP server over stdio."""
    from directive_engine.server import main as server_main

    server_main(config_path=config, watch=not no_watch)


if __name__ == "__main__":
    app()
