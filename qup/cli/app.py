"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from qup import __version__
from qup.core.parser import ManifestParser
from qup.core.platform import UNKNOWN_PLATFORM, resolve_platform
from qup.core.registry import SessionRegistry
from qup.core.session import Session
from qup.exceptions import QupError
from qup.models.config import Favorite, QupConfig, SessionParameters
from qup.storage.config_manager import SETTINGS_FILE_NAME, ConfigManager
from qup.storage.favorites import FavoritesStore
from qup.utils.path import home_path

from .activity import ActivityView, drive
from .formatters import (
    print_config,
    print_diff_table,
    print_favorite,
    print_favorites_table,
    print_manifest,
    print_platforms_table,
    print_summary_panel,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("qup")

app = typer.Typer(
    name="qup",
    help=(
        "Downloads a product from its instructions file, keeps the installed copy"
        " in sync and launches it. Use 'qup <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
favorite_app = typer.Typer(help="Manage saved favorites.", no_args_is_help=True)
app.add_typer(favorite_app, name="favorite")


def get_config_file() -> Path:
    return home_path() / SETTINGS_FILE_NAME


def _load_config(ctx: typer.Context) -> QupConfig:
    overrides = (ctx.obj or {}).get("overrides", {})
    return ConfigManager(get_config_file()).load_config(overrides)


def _validate_platform(label: str) -> str:
    if label and resolve_platform(label) is UNKNOWN_PLATFORM:
        console.print(
            f"[red]✗ Unknown platform '{label}'.[/red] "
            "Run [cyan]qup platforms[/cyan] for the list."
        )
        raise typer.Exit(code=1)
    return label


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the settings in effect."
    ),
    temp_dir: Path | None = typer.Option(
        None, "--temp-dir", help="Parent directory of the staging directories."
    ),
    max_connections: int | None = typer.Option(
        None, "--connections", "-c", help="Maximum simultaneous downloads per session."
    ),
):
    """qup: product downloader and installer."""
    if version:
        console.print(f"[bold]qup[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("qup").setLevel(log_level)

    ctx.obj = {
        "verbose": verbose,
        "overrides": {"temp_dir": temp_dir, "max_connections": max_connections},
    }

    if show_config:
        config = _load_config(ctx)
        print_config(get_config_file(), config)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _parameters(
    product: str,
    url: str = "",
    directory: str = "",
    platform: str = "",
    install: bool = False,
) -> SessionParameters:
    return SessionParameters(
        product=product,
        manifest_url=url,
        destination=directory,
        platform=_validate_platform(platform),
        auto_install=install,
    )


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except QupError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e


@app.command()
def fetch(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="URL of the product's instructions file."),
    product: str = typer.Option(..., "--product", "-p", help="Product name."),
    directory: str = typer.Option(..., "--dir", "-d", help="Product directory."),
    platform: str = typer.Option("", "--platform", "-P", help="Target platform label."),
    install: bool = typer.Option(
        False, "--install", "-i", help="Install once every file is downloaded."
    ),
):
    """Download a product into its staging directory."""
    config = _load_config(ctx)
    parameters = _parameters(product, url, directory, platform, install)
    view = ActivityView(console, show_diff=ctx.obj["verbose"] > 0)

    async def _fetch_async():
        session = Session(config, parameters)
        try:
            await drive(view, session, session.start())
            await drive(view, session, session.settle())
        finally:
            await session.close()
        print_summary_panel(product, session.stats, session.last_sync)
        if session.last_diff and not view.show_diff and session.last_diff.out_of_sync:
            console.print(
                f"[yellow]{len(session.last_diff.out_of_sync)} file(s) are not installed"
                " yet.[/yellow] Run [cyan]qup install[/cyan] to install them."
            )
        if session.last_error or (session.last_sync and not session.last_sync.ok):
            raise typer.Exit(code=1)

    _run(_fetch_async())


@app.command()
def install(
    ctx: typer.Context,
    product: str = typer.Option(..., "--product", "-p", help="Product name."),
    directory: str = typer.Option(..., "--dir", "-d", help="Product directory."),
    platform: str = typer.Option("", "--platform", "-P", help="Target platform label."),
    launch: bool = typer.Option(False, "--launch", help="Launch the product afterwards."),
):
    """Install the staged files of a product into its directory."""
    config = _load_config(ctx)
    parameters = _parameters(product, directory=directory, platform=platform)
    view = ActivityView(console, show_diff=ctx.obj["verbose"] > 0)

    async def _install_async():
        session = Session(config, parameters)
        try:
            await drive(view, session, session.install())
            await drive(view, session, session.settle())
            launched = session.launch() if launch else True
        finally:
            await session.close()
        print_summary_panel(product, session.stats, session.last_sync)
        if session.last_error or not (session.last_sync and session.last_sync.ok) or not launched:
            raise typer.Exit(code=1)

    _run(_install_async())


@app.command()
def diff(
    ctx: typer.Context,
    product: str = typer.Option(..., "--product", "-p", help="Product name."),
    directory: str = typer.Option(..., "--dir", "-d", help="Product directory."),
):
    """Compare the staged files of a product with the installed ones."""
    config = _load_config(ctx)
    parameters = _parameters(product, directory=directory)

    async def _diff_async():
        session = Session(config, parameters)
        try:
            task = session.refresh()
            result = await task if task else None
        finally:
            await session.close()
        if result is None:
            console.print(f"[yellow]Nothing is staged in {session.staging_dir}.[/yellow]")
            raise typer.Exit(code=1)
        print_diff_table(result.records, result.aggregate_digest)

    _run(_diff_async())


@app.command()
def launch(
    ctx: typer.Context,
    product: str = typer.Option(..., "--product", "-p", help="Product name."),
    directory: str = typer.Option(..., "--dir", "-d", help="Product directory."),
    platform: str = typer.Option("", "--platform", "-P", help="Target platform label."),
):
    """Start the installed product."""
    session = Session(_load_config(ctx), _parameters(product, directory=directory, platform=platform))
    try:
        launched = session.launch()
    except QupError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    if not launched:
        raise typer.Exit(code=1)


@app.command()
def parse(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Instructions file."),
    platform: str = typer.Option("", "--platform", "-P", help="Target platform label."),
):
    """Show what an instructions file resolves to for a platform."""
    label = _validate_platform(platform)
    try:
        manifest = ManifestParser(resolve_platform(label)).parse_file(file)
    except QupError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    print_manifest(manifest, label)


@app.command()
def platforms():
    """List the target platforms."""
    print_platforms_table()


@app.command()
def run(
    ctx: typer.Context,
    names: list[str] | None = typer.Argument(  # noqa: B008
        None, help="Favorites to run. All of them when omitted."
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        "-w",
        help="Keep running and re-download on each favorite's frequency.",
    ),
):
    """Run saved favorites concurrently."""
    config = _load_config(ctx)
    store = FavoritesStore(get_config_file())
    favorites = store.list()
    if names:
        missing = set(names) - {f.name for f in favorites}
        if missing:
            console.print(f"[red]✗ Unknown favorite(s): {', '.join(sorted(missing))}[/red]")
            raise typer.Exit(code=1)
        favorites = [f for f in favorites if f.name in names]
    if not favorites:
        console.print("[yellow]No favorites to run.[/yellow] Save one with [cyan]qup favorite save[/cyan].")
        raise typer.Exit(code=1)

    view = ActivityView(console, show_diff=False)

    async def _run_async() -> bool:
        registry = SessionRegistry(config)
        followers = []
        try:
            for favorite in favorites:
                session = registry.create(favorite.to_parameters())
                followers.append(asyncio.create_task(view.follow(session, favorite.name)))
                try:
                    session.start()
                except QupError:
                    continue
                if watch:
                    session.watch()
            await asyncio.gather(*(s.settle() for s in registry))
            if watch:
                console.print("[dim]Watching favorites. Press Ctrl-C to stop.[/dim]")
                await asyncio.Event().wait()
        finally:
            for follower in followers:
                follower.cancel()
            await asyncio.gather(*followers, return_exceptions=True)
            sessions = list(registry)
            await registry.close_all()
        ok = True
        for session in sessions:
            view.drain(session, session.product)
            print_summary_panel(session.product, session.stats, session.last_sync)
            ok = ok and not session.last_error
        return ok

    if not asyncio.run(_run_async()):
        raise typer.Exit(code=1)


@favorite_app.command("save")
def favorite_save(
    name: str = typer.Argument(..., help="Favorite (and product) name."),
    url: str = typer.Option(..., "--url", "-u", help="URL of the instructions file."),
    directory: str = typer.Option(..., "--dir", "-d", help="Product directory."),
    platform: str = typer.Option("", "--platform", "-P", help="Target platform label."),
    frequency: int = typer.Option(
        0, "--frequency", "-f", help="Download frequency in minutes (0 = never)."
    ),
    install: bool = typer.Option(
        False, "--install/--no-install", help="Install automatically after downloading."
    ),
):
    """Save or replace a favorite."""
    try:
        favorite = Favorite(
            name=name,
            url=url,
            local_directory=directory,
            operating_system=_validate_platform(platform),
            download_frequency=frequency,
            install_automatically=install,
        )
    except ValueError as e:
        console.print(f"[red]✗ Invalid favorite: {e}[/red]")
        raise typer.Exit(code=1) from e
    FavoritesStore(get_config_file()).save(favorite)
    console.print(f"[green]✓ Favorite '{name}' saved.[/green]")


@favorite_app.command("list")
def favorite_list():
    """List saved favorites."""
    print_favorites_table(FavoritesStore(get_config_file()).list())


@favorite_app.command("show")
def favorite_show(name: str = typer.Argument(..., help="Favorite name.")):
    """Show one favorite."""
    favorite = FavoritesStore(get_config_file()).get(name)
    if favorite is None:
        console.print(f"[red]✗ No favorite named '{name}'.[/red]")
        raise typer.Exit(code=1)
    print_favorite(favorite)


@favorite_app.command("delete")
def favorite_delete(
    name: str = typer.Argument(..., help="Favorite name."),
    force: bool = typer.Option(False, "--force", "-f", help="Bypass the confirmation prompt."),
):
    """Delete a favorite."""
    if not force and not typer.confirm(f"Delete the favorite '{name}'?"):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()
    if not FavoritesStore(get_config_file()).delete(name):
        console.print(f"[red]✗ No favorite named '{name}'.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Favorite '{name}' deleted.[/green]")
