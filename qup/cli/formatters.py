"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from qup.core.platform import PLATFORMS
from qup.models.config import Favorite, QupConfig
from qup.models.manifest import Manifest
from qup.models.records import FileRecord, SyncReport
from qup.models.stats import RoundStats
from qup.utils.formatting import format_duration, format_mode, format_size, short_digest


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the [settings] section of qup.ini.",
            "• Run `qup --show-config` to see the values in effect.",
        ],
        "SessionValidationError": [
            "• A product name, a product directory and an http(s) URL are required.",
        ],
        "SessionBusyError": [
            "• Wait for the running copy or download to finish.",
        ],
        "ManifestError": [
            "• The instructions file may have been truncated in transit.",
            "• Its last line must be the end-of-file comment.",
        ],
        "TransferError": [
            "• Check the product URL and your internet connection.",
            "• The server might be temporarily unavailable.",
        ],
        "LaunchError": [
            "• Install the product before launching it.",
            "• Check that --platform matches the installed files.",
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
        expand=False,
    )


def print_config(config_path: Path, config: QupConfig):
    """Displays the settings in effect."""
    console = Console()
    content = ""
    for key, value in config.model_dump().items():
        content += f"{key} = {'' if value is None else value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_platforms_table():
    console = Console()
    table = Table(title="Target Platforms", box=box.ROUNDED)
    table.add_column("Label", style="bold cyan")
    table.add_column("Token", style="dim")
    table.add_column("Family")
    table.add_column("Arch")
    table.add_column("Executables")
    table.add_column("Excluded", style="yellow")
    for platform in PLATFORMS:
        table.add_row(
            platform.label,
            platform.token,
            platform.family.value,
            platform.architecture,
            platform.executable_suffix or "(no suffix)",
            ", ".join(platform.excluded_extensions) or "-",
        )
    console.print(table)


def print_manifest(manifest: Manifest, platform_label: str):
    """Displays the sections and download batches resolved for one platform."""
    console = Console()
    sections = Table(show_header=True, box=box.SIMPLE)
    sections.add_column("Section", style="bold")
    sections.add_column("Active")
    sections.add_column("Directives", justify="right")
    for section in manifest.sections:
        sections.add_row(
            section.name,
            "[green]✓[/green]" if section.active else "[dim]✗[/dim]",
            str(len(section.directives)),
        )
    console.print(sections)

    files = Table(title=f"Files for {platform_label or 'no specific platform'}")
    files.add_column("Section", style="dim")
    files.add_column("Target", style="cyan")
    files.add_column("Exec", justify="center")
    files.add_column("URL", overflow="fold")
    for batch in manifest.batches:
        for spec in batch.files:
            files.add_row(
                batch.section,
                str(spec.target),
                "✓" if spec.executable else "",
                batch.url_for(spec),
            )
    console.print(files)
    console.print(
        f"[bold]{len(manifest.batches)}[/bold] batch(es), "
        f"[bold]{manifest.file_count}[/bold] file(s)."
    )


def print_diff_table(records: tuple[FileRecord, ...] | list[FileRecord], digest: str = ""):
    """Displays staged and installed files side by side; differences in red."""
    console = Console()
    table = Table(title="Staged vs. Installed", box=box.ROUNDED)
    table.add_column("File", style="cyan", overflow="fold")
    table.add_column("Staged", style="dim")
    table.add_column("Installed", style="dim")
    table.add_column("Mode")
    table.add_column("State", justify="center")
    for record in records:
        state = "[green]=[/green]" if record.in_sync else "[bold red]≠[/bold red]"
        mode = format_mode(record.staged_mode)
        if record.staged_mode != record.installed_mode:
            mode = f"{mode} → {format_mode(record.installed_mode)}"
        table.add_row(
            record.relative_path,
            short_digest(record.staged_digest),
            short_digest(record.installed_digest),
            mode,
            state,
        )
    console.print(table)
    out_of_sync = sum(1 for r in records if not r.in_sync)
    summary = (
        f"[bold red]{out_of_sync}[/bold red] of {len(records)} file(s) differ."
        if out_of_sync
        else f"[green]All {len(records)} file(s) are installed.[/green]"
    )
    if digest:
        summary += f" [dim](digest {short_digest(digest)})[/dim]"
    console.print(summary)


def print_favorites_table(favorites: list[Favorite]):
    console = Console()
    if not favorites:
        console.print("[dim]No favorites saved yet.[/dim]")
        return
    table = Table(title="Favorites", box=box.ROUNDED)
    table.add_column("Name", style="bold cyan")
    table.add_column("Platform")
    table.add_column("Every", justify="right")
    table.add_column("Auto", justify="center")
    table.add_column("Directory", style="dim", overflow="fold")
    for favorite in favorites:
        table.add_row(
            favorite.name,
            favorite.operating_system or "-",
            f"{favorite.download_frequency} min" if favorite.download_frequency else "never",
            "✓" if favorite.install_automatically else "",
            favorite.local_directory,
        )
    console.print(table)


def print_favorite(favorite: Favorite):
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    table.add_row("URL:", favorite.url)
    table.add_row("Directory:", favorite.local_directory)
    table.add_row("Platform:", favorite.operating_system or "(none)")
    table.add_row(
        "Download Frequency:",
        f"{favorite.download_frequency} min" if favorite.download_frequency else "never",
    )
    table.add_row(
        "Install Automatically:",
        "✓ Enabled" if favorite.install_automatically else "✗ Disabled",
    )
    console.print(
        Panel(table, title=f"[bold]{favorite.name}[/bold]", border_style="cyan")
    )


def print_summary_panel(
    product: str, stats: RoundStats, report: SyncReport | None = None
):
    """Displays the final summary of a round."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Downloaded:", f"[bold green]{stats.files_downloaded}[/bold green]"
    )
    if stats.files_failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats.files_failed}[/bold red]")
    if stats.files_aborted > 0:
        stats_table.add_row("○ Aborted:", f"[yellow]{stats.files_aborted}[/yellow]")
    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.bytes_downloaded)}[/cyan]"
    )

    if report is not None:
        stats_table.add_row("", "")
        stats_table.add_row("✓ Installed:", f"[bold green]{len(report.copied)}[/bold green]")
        if report.failures:
            stats_table.add_row(
                "✗ Copy Failures:", f"[bold red]{len(report.failures)}[/bold red]"
            )
        if report.desktop_entries:
            stats_table.add_row("Desktop Entries:", str(len(report.desktop_entries)))

    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(stats.elapsed)}[/blue]")

    failed = stats.files_failed or (report is not None and not report.ok)
    console.print()
    console.print(
        Panel(
            stats_table,
            title=f"[bold]{product}[/bold]",
            border_style="red" if failed else "green",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
