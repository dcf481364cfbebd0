"""
Azure OpenAI Proxy CLI

Command-line interface for running and inspecting the proxy.
"""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .config import load_config, create_default_config
from .errors import ConfigurationError
from .translator import build_upstream_url


console = Console()


def _mask(secret: str) -> str:
    if not secret:
        return "[red]not set[/red]"
    return f"{secret[:4]}…" if len(secret) > 8 else "****"


def _load(ctx):
    config_path = ctx.obj.get("config_path")
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(__version__, prog_name="aoai-proxy")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to config file")
@click.pass_context
def cli(ctx, config_path: str):
    """Azure OpenAI Proxy - OpenAI-compatible front for Azure OpenAI deployments"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# =============================================================================
# Server Commands
# =============================================================================

@cli.command()
@click.option("--host", "-h", default=None, help="Host to bind to")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to")
@click.pass_context
def start(ctx, host: str, port: int):
    """Start the proxy server."""
    config = _load(ctx)

    host = host or config.server.host
    port = port or config.server.port

    console.print(Panel(
        f"[bold]Azure OpenAI Proxy v{__version__}[/bold]\n"
        f"Starting server on [cyan]http://{host}:{port}[/cyan]\n"
        f"Deployment: {config.azure.deployment or config.azure.endpoint_full or 'not set'}",
        title="🚀 Starting"
    ))

    for problem in config.azure.problems():
        console.print(f"[yellow]![/yellow] {problem}")

    from .server import main as server_main
    server_main(ctx.obj.get("config_path"), host=host, port=port)


@cli.command()
@click.option("--port", "-p", default=8080, type=int, help="Server port")
def status(port: int):
    """Show server status."""
    import httpx

    try:
        response = httpx.get(f"http://localhost:{port}/health")
        data = response.json()
        console.print(f"[green]✓[/green] Proxy on port {port}: {data.get('status', 'unknown')}")
    except Exception as e:
        console.print(f"[red]✗[/red] Server not running: {e}")
        sys.exit(1)


@cli.command()
@click.option("--output", "-o", default="proxy.yaml", type=click.Path(), help="File to write")
def init(output: str):
    """Initialize a new configuration file."""
    config_path = Path(output)

    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    config_path.write_text(create_default_config())
    console.print(f"[green]✓[/green] Created {config_path}")
    console.print("\nSet AZURE_OPENAI_KEY (or edit the file), then run:")
    console.print(f"  [cyan]aoai-proxy -c {config_path} start[/cyan]")


# =============================================================================
# Inspection Commands
# =============================================================================

@cli.command()
@click.pass_context
def check(ctx):
    """Show the effective configuration and any problems."""
    config = _load(ctx)
    azure = config.azure

    table = Table(title="Effective Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("server.host", config.server.host)
    table.add_row("server.port", str(config.server.port))
    table.add_row("server.log_level", config.server.log_level)
    table.add_row("azure.endpoint_full", azure.endpoint_full or "[dim]-[/dim]")
    table.add_row("azure.base", azure.base or "[dim]-[/dim]")
    table.add_row("azure.deployment", azure.deployment or "[dim]-[/dim]")
    table.add_row("azure.api_version", azure.api_version)
    table.add_row("azure.key", _mask(azure.key))

    console.print(table)

    problems = azure.problems()
    if problems:
        for problem in problems:
            console.print(f"[red]✗[/red] {problem}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration OK")


@cli.command()
@click.argument("path")
@click.option("--query", "-q", default="", help="Incoming query string")
@click.pass_context
def translate(ctx, path: str, query: str):
    """Print the upstream URL a request to PATH would be sent to."""
    config = _load(ctx)

    try:
        url = build_upstream_url(path, query, config.azure)
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] {e.details}")
        sys.exit(1)

    click.echo(url)


# =============================================================================
# Main
# =============================================================================

def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
