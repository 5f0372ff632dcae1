"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from bundle_cache.models.stats import FetchStats
from bundle_cache.transfer.integrity import VerificationResult
from bundle_cache.utils.formatting import format_duration, format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "RetrievalError": [
            "• Check your internet connection.",
            "• Make sure the release tag exists on the origin.",
            "• Verify the origin URL with --show-config.",
        ],
        "IntegrityError": [
            "• The downloaded bundle does not match its published digest.",
            "• The origin or a proxy may be serving corrupted content.",
            "• Try again later; the cached files will be refetched.",
        ],
        "FilesystemError": [
            "• Check permissions and free space in the cache directory.",
            "• Make sure no regular file sits where a cache directory should be.",
        ],
        "ConfigurationError": [
            "• Review the configuration file shown by --show-config.",
            "• Run `bundle-cache init --force` to write a fresh one.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        box=box.ROUNDED,
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]) -> None:
    """Prints the effective configuration as a table."""
    console = Console()
    table = Table(
        title=f"Configuration ([dim]{config_path}[/dim])",
        box=box.SIMPLE_HEAVY,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key in sorted(config_data):
        table.add_row(key, str(config_data[key]))
    console.print(table)


def print_verification(bundle_path: Path, result: VerificationResult) -> None:
    console = Console()
    if result.is_valid:
        console.print(f"[green]✓ VALID[/green] [dim]{bundle_path}[/dim]")
    else:
        console.print(
            f"[red]✗ INVALID[/red] [dim]{bundle_path}[/dim]: {result.reason}"
        )


def print_stats_summary(stats: FetchStats, duration: float) -> None:
    """Prints a one-line summary of what the fetcher did."""
    console = Console(stderr=True)
    console.print(
        f"[dim]cache hits: {stats.cache_hits} · refetches: {stats.refetches} · "
        f"files downloaded: {stats.downloads} "
        f"({format_size(stats.bytes_downloaded)}) · {format_duration(duration)}[/dim]"
    )
