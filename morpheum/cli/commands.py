"""CLI commands for morpheum."""

import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from morpheum import __logo__, __version__

app = typer.Typer(
    name="morpheum",
    help=f"{__logo__} morpheum - chat-driven coding assistant",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} morpheum v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """morpheum - chat-driven coding assistant."""
    pass


def _setup_logging(debug: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "INFO")


# ============================================================================
# Onboard / Status
# ============================================================================


@app.command()
def onboard():
    """Write a default configuration to ~/.morpheum."""
    from morpheum.config.loader import get_config_path, get_env_path, save_config
    from morpheum.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"[green]✓[/green] Created secrets file at {get_env_path()} (mode 600)")

    console.print(f"\n{__logo__} morpheum is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add credentials to [cyan]~/.morpheum/.env[/cyan]")
    console.print("     Example: MORPHEUM_MATRIX__ACCESS_TOKEN=syt_xxx")
    console.print("  2. Set [cyan]matrix.homeserverUrl[/cyan] in config.json")
    console.print("  3. Start the bot: [cyan]morpheum bot[/cyan]")


@app.command()
def status():
    """Show configuration status."""
    from morpheum.config.loader import get_config_path, get_env_path, load_config

    config_path = get_config_path()
    env_path = get_env_path()
    config = load_config()

    console.print(f"{__logo__} morpheum Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Secrets: {env_path} {'[green]✓[/green]' if env_path.exists() else '[yellow]missing[/yellow]'}")

    p = config.providers
    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Target")
    table.add_column("Base URL")
    table.add_column("Credential")

    def mark(value: str) -> str:
        return "[green]✓[/green]" if value else "[dim]not set[/dim]"

    table.add_row("openai", p.openai.model, p.openai.base_url, mark(p.openai.api_key))
    table.add_row("ollama", p.ollama.model, p.ollama.base_url, "[dim]n/a[/dim]")
    table.add_row("copilot", p.copilot.repository or "[dim]not set[/dim]", p.copilot.base_url, mark(p.copilot.api_key))
    console.print(table)

    console.print(f"Startup provider: {config.get_provider_name()}")
    console.print(f"Sandbox: {config.sandbox.host}:{config.sandbox.port}")
    console.print(f"Matrix: {config.matrix.homeserver_url or '[dim]not set[/dim]'}")


# ============================================================================
# Bot / Task
# ============================================================================


@app.command()
def bot(
    debug: bool = typer.Option(False, "--debug", help="Log every received command"),
):
    """Connect to Matrix and serve rooms."""
    from morpheum.agent.engine import TaskEngine
    from morpheum.channels.matrix import MatrixChannel, MatrixClient, MatrixRoomStateStore
    from morpheum.channels.projects import ProjectRoomManager
    from morpheum.config.loader import load_config
    from morpheum.errors import MorpheumError
    from morpheum.github.client import GitHubClient
    from morpheum.router import CommandRouter

    _setup_logging(debug)
    config = load_config()
    matrix_cfg = config.matrix
    if not matrix_cfg.homeserver_url:
        console.print("[red]HOMESERVER_URL (matrix.homeserverUrl) is required.[/red]")
        raise typer.Exit(1)
    if not matrix_cfg.access_token and not (matrix_cfg.username and matrix_cfg.password):
        console.print(
            "[red]Either ACCESS_TOKEN or both MATRIX_USERNAME and MATRIX_PASSWORD are required.[/red]"
        )
        raise typer.Exit(1)

    client = MatrixClient(matrix_cfg.homeserver_url, matrix_cfg.access_token)
    try:
        engine = TaskEngine.from_config(config, store=MatrixRoomStateStore(client))
    except MorpheumError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    github = None
    if config.providers.copilot.api_key:
        github = GitHubClient(config.providers.copilot.api_key, config.providers.copilot.base_url)
    router = CommandRouter(engine, ProjectRoomManager(client, github), debug=debug or config.debug)
    channel = MatrixChannel(matrix_cfg, client, router.route)

    console.print(f"{__logo__} Starting morpheum bot on {matrix_cfg.homeserver_url}...")

    async def run():
        try:
            await channel.start()
        finally:
            await channel.stop()
            if github is not None:
                await github.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")
    except MorpheumError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@app.command()
def task(
    text: str = typer.Argument(..., help="Task to run"),
    provider: str = typer.Option(None, "--provider", "-p", help="openai, ollama or copilot"),
    local: bool = typer.Option(False, "--local", help="Run commands in a local shell instead of the jail"),
    debug: bool = typer.Option(False, "--debug", help="Verbose logging"),
):
    """Run a single task from the terminal."""
    from morpheum.agent.engine import TaskEngine
    from morpheum.config.loader import load_config
    from morpheum.errors import MorpheumError
    from morpheum.sandbox.local import LocalSandbox

    _setup_logging(debug)
    config = load_config()
    if provider:
        config.agents.defaults.provider = provider
    try:
        engine = TaskEngine.from_config(config)
    except MorpheumError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if local:
        engine.set_sandbox(LocalSandbox(timeout=config.sandbox.timeout))

    async def send(text: str, html: str | None = None) -> None:
        console.print(Markdown(text) if html else text)

    async def run():
        try:
            return await engine.handle_task(text, send)
        finally:
            await engine.state.client.close()

    outcome = asyncio.run(run())
    if outcome is None:
        raise typer.Exit(1)
    console.print(f"[dim]Finished: {outcome.reason.value} after {outcome.iterations} iteration(s)[/dim]")


if __name__ == "__main__":
    app()
