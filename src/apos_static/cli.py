"""Command line interface.

CLI module using Typer with Rich-formatted output for the export, validate and
init commands. Configuration comes from an optional YAML file, overridden by
command line options, with the backend URL and API key falling back to the
APOS_HOST and APOS_EXTERNAL_FRONT_KEY environment variables.
"""

# ruff: noqa: B008

import asyncio
import os
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from apos_static import __version__
from apos_static.config import ExportConfig, build_config, load_config_dict, load_locale_config
from apos_static.exceptions import AposStaticError, ConfigError
from apos_static.exporter import ExportResult, export_static
from apos_static.progress import ProgressChannel
from apos_static.utils import setup_logging, split_csv

console = Console()

app = typer.Typer(
    name="apos-static",
    help="apos-static - export ApostropheCMS sites to static files",
    add_completion=False,
)

HOST_ENV = "APOS_HOST"
KEY_ENV = "APOS_EXTERNAL_FRONT_KEY"
MAX_LISTED_ERRORS = 5


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"apos-static version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """apos-static - export ApostropheCMS sites to static files."""
    pass


def resolve_config(
    config_path: Path | None,
    overrides: dict[str, Any] | None = None,
    locale_config: Path | None = None,
) -> ExportConfig:
    """Merge the config file, command line overrides and environment.

    ``overrides`` maps dotted keys (``"crawling.concurrency"``) to values; None
    values are ignored.

    Raises:
        ConfigError: If the file is invalid or the merged result fails validation
    """
    data: dict[str, Any] = load_config_dict(config_path) if config_path else {}

    for dotted_key, value in (overrides or {}).items():
        if value is None:
            continue
        section = data
        *parents, key = dotted_key.split(".")
        for parent in parents:
            section = section.setdefault(parent, {})
            if not isinstance(section, dict):
                raise ConfigError(f"Configuration section {parent!r} must be a mapping")
        section[key] = value

    if not data.get("backend_url") and os.environ.get(HOST_ENV):
        data["backend_url"] = os.environ[HOST_ENV]
    if not data.get("api_key") and os.environ.get(KEY_ENV):
        data["api_key"] = os.environ[KEY_ENV]

    if not data.get("backend_url"):
        raise ConfigError(f"Backend URL is required (--backend-url, config file or {HOST_ENV})")
    if not data.get("api_key"):
        raise ConfigError(f"API key is required (--api-key, config file or {KEY_ENV})")

    if locale_config is not None:
        locales = load_locale_config(locale_config)
        data["locales"] = {code: settings.model_dump() for code, settings in locales.items()}

    return build_config(data, source=str(config_path) if config_path else "command line")


async def run_with_progress(config: ExportConfig) -> ExportResult:
    """Run the export while rendering its progress events."""
    channel = ProgressChannel()
    events = channel.subscribe()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("•"),
        TimeElapsedColumn(),
        console=console,
        expand=True,
    ) as progress:
        task = progress.add_task("[cyan]Exporting", total=100)

        async def consume() -> None:
            async for event in events:
                progress.update(
                    task,
                    completed=event.current,
                    description=f"[cyan]{event.message}",
                )

        consumer = asyncio.create_task(consume())
        try:
            return await export_static(config, progress=channel)
        finally:
            channel.close()
            await consumer


def _build_summary_table(result: ExportResult) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white", justify="right")

    table.add_row("Pages rendered", str(result.pages_rendered))
    table.add_row("Video widgets", str(result.video_widgets_processed))
    if result.uploads.copied_from is not None:
        table.add_row("Uploads copied from", str(result.uploads.copied_from))
    if result.uploads.downloaded or result.uploads.failed:
        table.add_row(
            "Uploads downloaded",
            f"{result.uploads.downloaded} ({result.uploads.failed} failed)",
        )
    table.add_row("Errors", str(len(result.errors)))
    return table


def _print_summary(result: ExportResult) -> None:
    """Print final summary with statistics and the first few page failures."""
    console.print()
    console.print("=" * 70)
    if result.success:
        console.print("[bold green]Export complete![/]\n")
    else:
        console.print("[bold yellow]Export finished with errors[/]\n")

    console.print(_build_summary_table(result))

    if result.errors:
        console.print()
        console.print("[bold yellow]Failed pages:[/]")
        for error in result.errors[:MAX_LISTED_ERRORS]:
            console.print(f"  • {error.url}: {error.message}", markup=False)
        if len(result.errors) > MAX_LISTED_ERRORS:
            console.print(f"  ... and {len(result.errors) - MAX_LISTED_ERRORS} more")

    console.print()
    console.print(f"[bold]Output saved to:[/] {result.output_dir}")
    console.print("=" * 70)


@app.command()
def export(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML config file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    backend_url: str | None = typer.Option(
        None, "--backend-url", help=f"ApostropheCMS backend URL (env: {HOST_ENV})"
    ),
    api_key: str | None = typer.Option(
        None, "--api-key", help=f"External front key (env: {KEY_ENV})"
    ),
    out: str | None = typer.Option(None, "--out", "-o", help="Output directory"),
    host: str | None = typer.Option(None, "--host", help="Preview server host"),
    port: int | None = typer.Option(None, "--port", help="Preview server port", min=1, max=65535),
    concurrency: int | None = typer.Option(
        None, "--concurrency", help="Pages rendered in parallel", min=1
    ),
    retries: int | None = typer.Option(None, "--retries", help="Retries per request", min=0),
    piece_types: str | None = typer.Option(
        None,
        "--piece-types",
        help="Comma-separated piece types (default: auto-discover)",
    ),
    locale_config: Path | None = typer.Option(
        None,
        "--locale-config",
        help="YAML file mapping locale codes to {base_url, prefix}",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    uploads: str | None = typer.Option(
        None, "--uploads", help="Upload policy: none, copy-only or download"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Export an ApostropheCMS site to static files.

    Builds the frontend, starts its preview server, discovers every page and
    piece, renders them and writes a static tree. Exits with status 1 when any
    page failed to render.
    """
    try:
        setup_logging(verbose=verbose, console=console)

        if config:
            console.print(f"[cyan]Loading configuration from:[/cyan] {config}")

        export_config = resolve_config(
            config,
            {
                "backend_url": backend_url,
                "api_key": api_key,
                "output.dir": out,
                "preview.host": host,
                "preview.port": port,
                "crawling.concurrency": concurrency,
                "crawling.retries": retries,
                "crawling.piece_types": split_csv(piece_types),
                "uploads.policy": uploads,
            },
            locale_config=locale_config,
        )

        console.print(f"[green]Exporting:[/green] {export_config.backend_url}")
        console.print(f"[cyan]Output directory:[/cyan] {export_config.output.dir}")

        result = asyncio.run(run_with_progress(export_config))
        _print_summary(result)

        if not result.success:
            raise typer.Exit(code=1)

    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1) from None

    except AposStaticError as e:
        console.print(f"[red]Export failed:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None

    except KeyboardInterrupt:
        console.print("\n[yellow]Export interrupted by user[/yellow]")
        raise typer.Exit(code=130) from None


@app.command()
def validate(
    config_path: Path = typer.Argument(
        ...,
        help="Path to YAML config file to validate",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Validate an apos-static configuration file.

    The backend URL and API key may come from the environment instead of the
    file, as they do for export.
    """
    try:
        console.print(f"[cyan]Validating configuration:[/cyan] {config_path}")

        export_config = resolve_config(config_path)

        console.print("[green][OK] Configuration is valid![/green]\n")

        table = Table(title="Configuration Summary")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")

        piece_types = export_config.crawling.piece_types
        table.add_row("Backend URL", export_config.backend_url)
        table.add_row("Preview URL", export_config.preview.url)
        table.add_row("Output Directory", export_config.output.dir)
        table.add_row("Concurrency", str(export_config.crawling.concurrency))
        table.add_row("Retries", str(export_config.crawling.retries))
        table.add_row(
            "Piece Types", ", ".join(piece_types) if piece_types is not None else "auto-discover"
        )
        table.add_row(
            "Locales", ", ".join(export_config.locales) if export_config.locales else "none"
        )
        table.add_row("Uploads", export_config.uploads.policy)

        console.print(table)

    except ConfigError as e:
        console.print("[red][FAIL] Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None


@app.command()
def init(
    output_path: Path | None = typer.Argument(
        None,
        help="Output path for generated config file (default: apos-static.yaml)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing file",
    ),
) -> None:
    """Create a new apos-static configuration file interactively.

    The API key is not written to the file; export reads it from
    APOS_EXTERNAL_FRONT_KEY.
    """
    if output_path is None:
        output_path = Path("apos-static.yaml")

    if output_path.exists() and not force:
        console.print(f"[red]Error:[/red] File already exists: {output_path}")
        console.print("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(code=1)

    try:
        console.print("[cyan]Create a new apos-static configuration[/cyan]\n")

        backend_url = typer.prompt("Backend URL", default="http://localhost:3000")
        if not backend_url.startswith(("http://", "https://")):
            console.print("[red]Error:[/red] Backend URL must start with http:// or https://")
            raise typer.Exit(code=1)

        out_dir = typer.prompt("Output directory", default="static-dist")
        upload_policy = typer.prompt(
            "Upload policy (none, copy-only, download)", default="none"
        )

        config_template = {
            "backend_url": backend_url.rstrip("/"),
            "preview": {"host": "127.0.0.1", "port": 4321},
            "crawling": {"retries": 3},
            "output": {"dir": out_dir, "build_dir": "dist"},
            "uploads": {"policy": upload_policy},
        }

        with output_path.open("w", encoding="utf-8") as f:
            f.write("# apos-static configuration\n")
            f.write(f"# API key: set {KEY_ENV} in the environment\n\n")
            yaml.dump(config_template, f, default_flow_style=False, sort_keys=False)

        console.print(f"\n[green][OK] Configuration created:[/green] {output_path}")
        console.print("\n[dim]Next steps:[/dim]")
        console.print(f"  1. export {KEY_ENV}=<your key>")
        console.print(f"  2. Run: apos-static validate {output_path}")
        console.print(f"  3. Run: apos-static export --config {output_path}")

    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        raise typer.Exit(code=130) from None


if __name__ == "__main__":
    app()
