"""
Defines the command-line interface for the bundle cache using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from bundle_cache import __version__
from bundle_cache.core.fetcher import BundleFetcher
from bundle_cache.exceptions import BundleCacheError
from bundle_cache.storage.config_manager import ConfigManager

from .formatters import (
    format_error_with_suggestions,
    print_config,
    print_stats_summary,
    print_verification,
)

console = Console(stderr=True)

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
            markup=False,
        )
    ],
)
log = logging.getLogger("bundle_cache")

app = typer.Typer(
    name="bundle-cache",
    help="Fetch and verify versioned actor bundles into a local cache.",
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "bundle-cache"


def get_default_cache_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("LOCALAPPDATA", "~\\AppData\\Local"))
    else:
        base_dir = Path(os.getenv("XDG_CACHE_HOME", "~/.cache"))
    return base_dir.expanduser() / "bundle-cache"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _config_manager() -> ConfigManager:
    return ConfigManager(CONFIG_FILE, get_default_cache_dir())


def _fail(error: BundleCacheError) -> typer.Exit:
    console.print(format_error_with_suggestions(error))
    return typer.Exit(code=1)


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
        False, "--show-config", help="Display the effective configuration."
    ),
):
    """Bundle cache CLI"""
    if version:
        console.print(f"[bold]bundle-cache[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "DEBUG" if verbose >= 2 else "INFO"
    logging.getLogger("bundle_cache").setLevel(log_level)

    if show_config:
        try:
            config = _config_manager().load_config()
        except BundleCacheError as e:
            raise _fail(e) from e
        print_config(CONFIG_FILE, config.model_dump())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", "-d", help="Directory that holds cached bundles."
    ),
    origin: str | None = typer.Option(
        None, "--origin", help="Base URL that releases are downloaded from."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration file."
    ),
):
    """Write a configuration file with the given settings."""
    if CONFIG_FILE.exists() and not force:
        if not typer.confirm("Configuration file already exists. Overwrite it?"):
            raise typer.Abort()

    settings = {
        key: value
        for key, value in {"cache_dir": cache_dir, "origin_url": origin}.items()
        if value is not None
    }
    try:
        _config_manager().save_new_config(settings)
    except BundleCacheError as e:
        raise _fail(e) from e
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")


@app.command()
def fetch(
    version: int = typer.Argument(..., min=0, help="Major bundle version."),
    release: str = typer.Argument(..., help="Release tag, e.g. v8.0.0."),
    network: str = typer.Argument(..., help="Network name, e.g. mainnet."),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", "-d", help="Override the cache directory."
    ),
    origin: str | None = typer.Option(
        None, "--origin", help="Override the download origin."
    ),
):
    """Print the path of a verified bundle, downloading it if needed."""
    try:
        config = _config_manager().load_config(
            {"cache_dir": cache_dir, "origin_url": origin}
        )
    except BundleCacheError as e:
        raise _fail(e) from e

    async def _fetch_async() -> Path:
        start_time = time.monotonic()
        async with BundleFetcher(config.cache_dir, config) as fetcher:
            try:
                return await fetcher.fetch(version, release, network)
            finally:
                print_stats_summary(fetcher.stats, time.monotonic() - start_time)

    try:
        bundle_path = asyncio.run(_fetch_async())
    except BundleCacheError as e:
        raise _fail(e) from e
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e

    typer.echo(str(bundle_path))


@app.command()
def verify(
    version: int = typer.Argument(..., min=0, help="Major bundle version."),
    release: str = typer.Argument(..., help="Release tag, e.g. v8.0.0."),
    network: str = typer.Argument(..., help="Network name, e.g. mainnet."),
    cache_dir: Path | None = typer.Option(
        None, "--cache-dir", "-d", help="Override the cache directory."
    ),
):
    """Check a cached bundle against its digest without downloading anything."""
    try:
        config = _config_manager().load_config({"cache_dir": cache_dir})
    except BundleCacheError as e:
        raise _fail(e) from e

    async def _verify_async():
        async with BundleFetcher(config.cache_dir, config) as fetcher:
            result = await fetcher.verify(version, release, network)
            return fetcher.bundle_path(version, release, network), result

    try:
        bundle_path, result = asyncio.run(_verify_async())
    except BundleCacheError as e:
        raise _fail(e) from e
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e

    print_verification(bundle_path, result)
    if not result.is_valid:
        raise typer.Exit(code=1)
