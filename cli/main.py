#!/usr/bin/env python3
"""
CLI for the AI execution router.

Usage:
    ai-router config                       # Show configuration (secrets masked)
    ai-router providers                    # Show the provider dispatch table
    ai-router run graph.json NODE_ID       # Execute one AI node of a graph snapshot
"""
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

# Load .env before importing router modules
load_dotenv()

console = Console()

# Global verbose flag
VERBOSE = False

MEDIA_URL_KEYS = ("image_url", "file_url", "video_url", "audio_url", "url")


@click.group()
@click.version_option(version="0.1.0", prog_name="ai-router")
@click.option('--verbose', '-v', is_flag=True, help='Show full error tracebacks for debugging')
def cli(verbose: bool):
    """
    AI Execution Router - run AI nodes of a workflow graph against OpenAI,
    Gemini, Google AI Studio, Replicate, Midjourney or the offline stub.

    \b
    Examples:
      ai-router config
      ai-router run graph.json n_1
      ai-router -v run graph.json n_1 --format json
    """
    global VERBOSE
    VERBOSE = verbose


def _mask(value: Any) -> str:
    text = str(value)
    return "***" + text[-4:] if len(text) > 4 else "***"


@cli.command()
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'table']), default='table', help='Output format')
def config(fmt: str):
    """
    Show current configuration.

    Displays configuration values loaded from environment variables and .env file.
    """
    from shared.config import config as router_config

    console.print(Panel.fit(
        "[bold cyan]AI Router Configuration[/bold cyan]",
        border_style="cyan"
    ))

    # Configuration sections to display
    sections = {
        "API Keys": [
            ("openai_api_key", "OPENAI_API_KEY", True),  # (attr, env_var, is_secret)
            ("gemini_api_key", "GEMINI_API_KEY", True),
            ("replicate_api_token", "REPLICATE_API_TOKEN", True),
        ],
        "Endpoints": [
            ("openai_base_url", "OPENAI_BASE_URL", False),
            ("gemini_base_url", "GEMINI_BASE_URL", False),
            ("replicate_api_base_url", "REPLICATE_API_BASE_URL", False),
            ("midjourney_relay_url", "MIDJOURNEY_RELAY_URL", False),
            ("app_base_url", "APP_BASE_URL", False),
        ],
        "Models": [
            ("openai_default_model", "OPENAI_DEFAULT_MODEL", False),
            ("gemini_default_model", "GEMINI_DEFAULT_MODEL", False),
            ("google_ai_studio_default_model", "GOOGLE_AI_STUDIO_DEFAULT_MODEL", False),
        ],
        "Polling": [
            ("replicate_poll_interval_ms", "REPLICATE_POLL_INTERVAL_MS", False),
            ("replicate_poll_timeout_ms", "REPLICATE_POLL_TIMEOUT_MS", False),
            ("midjourney_poll_interval_seconds", "MIDJOURNEY_POLL_INTERVAL_SECONDS", False),
            ("midjourney_main_max_attempts", "MIDJOURNEY_MAIN_MAX_ATTEMPTS", False),
            ("midjourney_upscale_max_attempts", "MIDJOURNEY_UPSCALE_MAX_ATTEMPTS", False),
        ],
        "Runtime": [
            ("uploads_dir", "UPLOADS_DIR", False),
            ("http_timeout_seconds", "HTTP_TIMEOUT_SECONDS", False),
            ("stub_fallback_enabled", "STUB_FALLBACK_ENABLED", False),
            ("log_level", "LOG_LEVEL", False),
        ],
    }

    if fmt == 'json':
        output = {}
        for section, items in sections.items():
            output[section] = {}
            for attr, env_var, is_secret in items:
                value = getattr(router_config, attr, None)
                output[section][attr] = _mask(value) if is_secret and value else value
        console.print_json(data=output, default=str)
    else:
        for section, items in sections.items():
            table = Table(title=section, box=box.ROUNDED)
            table.add_column("Setting", style="cyan")
            table.add_column("Env Variable", style="dim")
            table.add_column("Value")
            table.add_column("Status", justify="center")

            for attr, env_var, is_secret in items:
                value = getattr(router_config, attr, None)
                if value is None:
                    display_value = "[dim]not set[/dim]"
                    status = "[yellow]○[/yellow]"
                elif is_secret:
                    display_value = _mask(value)
                    status = "[green]●[/green]"
                else:
                    display_value = str(value)
                    status = "[green]●[/green]"

                table.add_row(attr, env_var, display_value, status)

            console.print(table)
            console.print()


@cli.command()
def providers():
    """
    Show the provider dispatch table.

    Any provider id that is not listed is handled by the OpenAI-compatible adapter.
    """
    from ai_router.runtime.router import build_default_registry
    from ai_router.runtime.services import RouterServices

    registry = build_default_registry(RouterServices.create())
    table = Table(title="Providers", box=box.ROUNDED)
    table.add_column("Provider", style="cyan")
    table.add_column("Aliases", style="dim")
    for provider_id, aliases in registry.table():
        marker = " [green](default)[/green]" if provider_id == registry.default_id else ""
        table.add_row(f"{provider_id}{marker}", ", ".join(aliases) or "-")
    console.print(table)


def _attached_files(nodes) -> List[Any]:
    from ai_router.schema.models import AttachedFile

    files = []
    for node in nodes:
        if node.type not in ("image", "file", "video", "audio", "pdf"):
            continue
        url = next((node.meta[key] for key in MEDIA_URL_KEYS if isinstance(node.meta.get(key), str) and node.meta[key]), None)
        if url:
            kind = f"{node.type}/base64" if url.startswith("data:") else f"{node.type}/url"
            files.append(AttachedFile(name=node.display_title, type=kind, content=url, source_node_id=node.node_id))
    return files


def build_context(snapshot: Dict[str, Any], node_id: str, store, schema_ref: str):
    """
    Load the snapshot into ``store`` and build the execution context of ``node_id``
    from its incoming and outgoing edges.
    """
    from ai_router.schema.models import AiExecutionContext, NextNodeSummary

    project_id = snapshot.get("project_id") or "local"
    store.load_snapshot(project_id, snapshot.get("nodes", []), snapshot.get("edges", []))
    node = store.get_node(project_id, node_id)
    if node is None:
        raise click.BadParameter(f"Node '{node_id}' not found in graph", param_hint="NODE_ID")

    edges = store.list_edges(project_id)
    previous = [store.get_node(project_id, edge.from_node) for edge in edges if edge.to == node_id]
    following = [store.get_node(project_id, edge.to) for edge in edges if edge.from_node == node_id]
    previous = [item for item in previous if item is not None]
    return AiExecutionContext(
        project_id=project_id,
        node=node,
        previous_nodes=previous,
        next_nodes=[
            NextNodeSummary(node_id=item.node_id, type=item.type, title=item.title, short_description=(item.content or "")[:120])
            for item in following
            if item is not None
        ],
        schema_ref=schema_ref,
        settings=snapshot.get("settings", {}),
        project_owner_id=snapshot.get("owner_id"),
        actor_user_id=snapshot.get("user_id"),
        files=_attached_files(previous),
        edges=[edge for edge in edges if edge.to == node_id],
    )


def _integration_store(snapshot: Dict[str, Any]):
    from ai_router.stores.base import IntegrationRecord
    from ai_router.stores.memory import InMemoryIntegrationStore

    integrations = InMemoryIntegrationStore()
    for user_id, records in (snapshot.get("integrations") or {}).items():
        for provider_id, record in records.items():
            integrations.put(
                user_id,
                IntegrationRecord(provider_id=provider_id, enabled=record.get("enabled", True), config=record.get("config", {})),
            )
    return integrations


@cli.command()
@click.argument('graph_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('node_id')
@click.option('--schema', 'schema_ref', default='TEXT_RESPONSE', help='Response schema (TEXT_RESPONSE, PLAN_SCHEMA, ...)')
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'rich']), default='rich', help='Output format')
def run(graph_file: Path, node_id: str, schema_ref: str, fmt: str):
    """
    Execute one AI node of a graph snapshot.

    GRAPH_FILE is a JSON document with "nodes" and "edges" and optionally
    "project_id", "settings", "user_id", "owner_id" and "integrations".
    Nodes created by the provider are printed with the result.

    \b
    Example:
      ai-router run examples/graph.json n_1
      ai-router run examples/graph.json n_1 --schema PLAN_SCHEMA --format json
    """
    from ai_router.errors import AiRouterError
    from ai_router.runtime.router import AiRouter
    from ai_router.runtime.services import RouterServices
    from ai_router.stores.memory import InMemoryGraphStore
    from shared.logger import set_level

    snapshot = json.loads(graph_file.read_text(encoding="utf-8"))
    store = InMemoryGraphStore()
    ctx = build_context(snapshot, node_id, store, schema_ref)
    before = {node.node_id for node in store.list_nodes(ctx.project_id)}

    # Router logs share stdout with the result; only warnings unless --verbose
    router_logger = set_level("ai_router", logging.DEBUG if VERBOSE else logging.WARNING)
    services = RouterServices.create(graph_store=store, integrations=_integration_store(snapshot), logger=router_logger)
    router = AiRouter(services)
    try:
        result = asyncio.run(router.dispatch(ctx))
    except AiRouterError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if VERBOSE:
            console.print_exception()
        sys.exit(1)

    created = [node for node in store.list_nodes(ctx.project_id) if node.node_id not in before]
    if fmt == 'json':
        output = result.model_dump(mode="json")
        output["created_nodes"] = [node.model_dump(mode="json") for node in created]
        console.print_json(data=output, default=str)
        return

    console.print(Panel(
        result.output,
        title=f"[bold cyan]{result.provider}[/bold cyan] · {result.content_type}",
        border_style="cyan",
    ))
    if result.logs:
        console.print("[bold]Log:[/bold]")
        for line in result.logs:
            console.print(f"  [dim]•[/dim] {line}")
    for failure in result.partial_failures:
        console.print(f"[yellow]⚠ Sub-job {failure.index} ({failure.job_id or 'not submitted'}): {failure.reason}[/yellow]")
    if created:
        table = Table(title="Created nodes", box=box.ROUNDED)
        table.add_column("Node", style="cyan")
        table.add_column("Type")
        table.add_column("Title")
        for node in created:
            table.add_row(node.node_id, node.type, node.title)
        console.print(table)


if __name__ == '__main__':
    cli()
