"""Command-line interface for the WebP Lab batch transformer."""

import json
import sys
from pathlib import Path

import click
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

from webp_lab import __version__
from webp_lab.errors import NoSuccessfulTransformsError
from webp_lab.logging_config import log_operation_error, setup_logging
from webp_lab.models import BatchItem, OutputFormat, PackagedResponse
from webp_lab.options import PRESETS, apply_preset, normalize_config
from webp_lab.orchestrator import TransformOrchestrator

# Create console for rich output
console = Console()


def format_bytes(size: float) -> str:
    """Format a byte count with binary units (B, KB, MB, GB)."""
    if size < 0:
        return "0 B"
    if size < 1024:
        return f"{int(size)} B"

    units = ["KB", "MB", "GB"]
    value = size / 1024
    unit_index = 0
    while value >= 1024 and unit_index < len(units) - 1:
        value /= 1024
        unit_index += 1

    return f"{value:.0f} {units[unit_index]}" if value >= 100 else f"{value:.1f} {units[unit_index]}"


def build_options(
    options_json: str | None,
    preset: str | None,
    output_format: str | None,
    quality: int | None,
) -> dict:
    """Merge the JSON options, a preset and explicit flags (flags win).

    Raises:
        click.BadParameter: If the JSON options are malformed
    """
    raw: dict = {}
    if options_json:
        try:
            parsed = json.loads(options_json)
        except ValueError as e:
            raise click.BadParameter(f"Options must be JSON: {e}", param_hint="--options") from e
        raw = parsed if isinstance(parsed, dict) else {}

    if preset:
        raw = apply_preset(raw, preset).to_dict()
    if output_format:
        raw["format"] = output_format
    if quality is not None:
        raw["quality"] = quality

    return raw


def run_with_progress(
    items: list[BatchItem], orchestrator: TransformOrchestrator, options: dict
) -> PackagedResponse:
    """Run the batch while displaying a progress bar."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("[cyan]Transforming images...", total=len(items))

        def progress_callback(current: int, _total: int, filename: str) -> None:
            progress.update(task, completed=current, description=f"[cyan]Transforming: {filename}")

        orchestrator.progress_callback = progress_callback
        response = orchestrator.run(items, normalize_config(options))

        progress.update(task, completed=len(items), description="[green]Transform complete!")

    return response


def display_summary(response: PackagedResponse, output_path: Path) -> None:
    """Display a summary table for a packaged batch."""
    table = Table(title="Transform Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    saved = 0.0
    if response.total_input_bytes > 0:
        saved = (1 - response.total_output_bytes / response.total_input_bytes) * 100

    table.add_row("Processed", f"[green]{response.processed}[/green]")
    table.add_row("Failed", f"[red]{response.failed}[/red]")
    table.add_row("Input Size", format_bytes(response.total_input_bytes))
    table.add_row("Output Size", format_bytes(response.total_output_bytes))
    table.add_row("Saved", f"{saved:.1f}%")
    table.add_row("Output", str(output_path))

    console.print()
    console.print(table)

    if response.failures:
        console.print()
        console.print("[bold red]Failed Transforms:[/bold red]")
        for failure in response.failures:
            console.print(f"  [red]✗[/red] {failure.original_name}: {failure.reason}")


def handle_error(error: Exception) -> None:
    """Display a formatted error message."""
    console.print(f"[bold red]Error:[/bold red] {str(error)}", style="red")
    if isinstance(error, NoSuccessfulTransformsError):
        for failure in error.failures:
            console.print(f"  [red]✗[/red] {failure.original_name}: {failure.reason}")


@click.group(invoke_without_command=True)
@click.option(
    "--version",
    is_flag=True,
    default=False,
    help="Show version information and exit.",
)
@click.help_option("--help", "-h")
@click.pass_context
def main(ctx: click.Context, version: bool) -> None:
    """Batch-transform images to WebP, AVIF, JPEG or PNG."""
    if version:
        console.print(f"WebP Lab v{__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@main.command()
@click.argument(
    "files",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=False,
)
@click.option(
    "--options",
    "options_json",
    default=None,
    help='Transform options as JSON, e.g. \'{"format": "avif", "width": 1200}\'.',
)
@click.option(
    "--preset",
    type=click.Choice([preset.id for preset in PRESETS]),
    default=None,
    help="Apply a named preset on top of --options.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([fmt.value for fmt in OutputFormat]),
    default=None,
    help="Output format. Default: webp.",
)
@click.option(
    "--quality",
    "-q",
    type=click.IntRange(1, 100),
    default=None,
    help="Encoder quality (1-100). Default: 82.",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Directory for the transformed image or archive. Default: current directory.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also append log records to this file.",
)
def transform(
    files: tuple[Path, ...],
    options_json: str | None,
    preset: str | None,
    output_format: str | None,
    quality: int | None,
    output_dir: Path,
    verbose: bool,
    log_file: Path | None,
) -> None:
    """Transform FILES with one shared configuration.

    A single image is written as-is; several images (or any failure) produce
    a zip archive with a manifest.

    Examples:

        # Convert a photo to WebP
        webp-lab transform photo.jpg

        # Batch convert to AVIF into ./out
        webp-lab transform *.png --format avif -o out

        # Social card preset
        webp-lab transform banner.png --preset social-1200
    """
    file_list = list(files)
    if not file_list:
        console.print("[bold red]Error:[/bold red] No files specified.", style="red")
        sys.exit(1)

    logger = setup_logging(verbose=verbose, log_file=log_file)

    try:
        options = build_options(options_json, preset, output_format, quality)
        items = [BatchItem(name=path.name, data=path.read_bytes()) for path in file_list]

        orchestrator = TransformOrchestrator(logger)
        console.print(f"Transforming [cyan]{len(items)}[/cyan] file(s)...")
        response = run_with_progress(items, orchestrator, options)

        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / response.filename
        output_path.write_bytes(response.data)

        display_summary(response, output_path)

        if response.failed > 0:
            sys.exit(1)

    except click.BadParameter:
        raise
    except Exception as e:
        log_operation_error(logger, "transform", e)
        handle_error(e)
        sys.exit(1)


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port.")
def serve(host: str, port: int) -> None:
    """Run the HTTP transform service."""
    import uvicorn

    uvicorn.run("webp_lab.api:app", host=host, port=port)


if __name__ == "__main__":
    main()
