"""Command-line interface for image-sanitizer."""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich import box
from rich.console import Console
from rich.table import Table

from image_sanitizer import __version__
from image_sanitizer.core.fingerprint import FingerprintBuilder
from image_sanitizer.core.index import DuplicateIndex
from image_sanitizer.core.models import Fingerprint
from image_sanitizer.core.runner import BatchRunner, handle_interrupts
from image_sanitizer.errors import FatalError, FileFailure, ToolError
from image_sanitizer.tools.metadata import MetadataChain
from image_sanitizer.tools.registry import ToolSet, tool_status
from image_sanitizer.ui.progress import ProgressObserver
from image_sanitizer.ui.report import RunReport
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.logger import PACKAGE_LOGGER, setup_logger

console = Console()
logger = setup_logger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_FATAL = 2


@click.group()
@click.version_option(version=__version__, prog_name="image-sanitizer")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write a detailed log to this file",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Configuration file (default: ~/.image-sanitizer/config.json)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_file: Optional[Path], config_file: Optional[Path]) -> None:
    """
    Image Sanitizer - Remove duplicate images and strip sensitive metadata.

    Every surviving image is replaced by a stripped, re-encoded and optimized
    copy. No original is destroyed before its replacement has been verified.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_file"] = config_file

    setup_logger(PACKAGE_LOGGER, level=logging.DEBUG if verbose else logging.INFO, log_file=log_file)


def _load_config(ctx: click.Context) -> Config:
    return Config(ctx.obj.get("config_file"))


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--workers", "-w", type=click.IntRange(min=1), help="Number of parallel workers")
@click.option(
    "--retries",
    "-r",
    type=click.IntRange(min=1),
    help="Attempts per operation before a file is reported as failed (default: from config)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Classify and sanitize in scratch only; delete and replace nothing",
)
@click.option(
    "--naming",
    type=click.Choice(["content", "uuid"], case_sensitive=False),
    help="Name committed files by content hash or by a random identifier",
)
@click.option(
    "--scratch-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for per-file scratch areas (default: system temp dir)",
)
@click.option("--lossless", is_flag=True, help="Never reduce quality when optimizing")
@click.option(
    "--show-progress/--no-progress",
    default=True,
    help="Show progress bars",
)
@click.option("--list-files", is_flag=True, help="List every file with its final state")
@click.pass_context
def run(
    ctx: click.Context,
    path: Path,
    workers: Optional[int],
    retries: Optional[int],
    dry_run: bool,
    naming: Optional[str],
    scratch_dir: Optional[Path],
    lossless: bool,
    show_progress: bool,
    list_files: bool,
) -> None:
    """
    Deduplicate and sanitize the images directly inside PATH.

    Exit status is 0 when every file was committed or skipped as a duplicate,
    1 when any file failed, 2 on a fatal error and 130 when interrupted.

    Example:
        image-sanitizer run ~/Pictures/export --dry-run
    """
    config = _load_config(ctx)

    # Override config with command-line options for this run only
    if retries is not None:
        config.set("retry.max_attempts", retries, persist=False)
    if naming:
        config.set("naming", naming.lower(), persist=False)
    if scratch_dir:
        config.set("scratch_dir", str(scratch_dir), persist=False)
    if lossless:
        config.set("optimize.allow_lossy", False, persist=False)

    console.print(
        f"\n[bold cyan]Image Sanitizer v{__version__}[/bold cyan] - "
        f"{'Dry run' if dry_run else 'Sanitizing'} {path}\n"
    )

    runner = BatchRunner(
        config,
        dry_run=dry_run,
        workers=workers,
        observers=[ProgressObserver(enabled=show_progress)],
    )
    try:
        with handle_interrupts(runner):
            summary = runner.run(path)
    except FatalError as e:
        logger.error(str(e))
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(EXIT_FATAL)

    RunReport(console).show(summary, show_files=list_files)
    sys.exit(summary.exit_code)


@cli.command(name="check-tools")
@click.pass_context
def check_tools(ctx: click.Context) -> None:
    """
    Show which external tools are installed and what the run would use.

    Exits with status 2 when a mandatory capability is unavailable.
    """
    config = _load_config(ctx)

    table = Table(title="External Tools", box=box.ROUNDED)
    table.add_column("Tool", style="cyan")
    table.add_column("Capability")
    table.add_column("Status", justify="center")
    table.add_column("Location", style="dim")

    for name, capability, location in tool_status():
        status = "[green]found[/green]" if location else "[red]missing[/red]"
        table.add_row(name, capability, status, location or "")

    console.print(table)

    try:
        tools = ToolSet.from_config(config)
    except FatalError as e:
        console.print(f"\n[red]✗ {e}[/red]")
        sys.exit(EXIT_FATAL)

    console.print(f"\n[bold]Metadata chain:[/bold] {' -> '.join(tools.metadata.names)}")
    console.print(f"[bold]Transform:[/bold] {tools.transform.name}")
    for image_format in config.get_formats():
        names = [o.name for o in tools.optimizers_for(image_format)]
        console.print(
            f"[bold]Optimizers ({image_format}):[/bold] "
            + (", ".join(names) if names else "[yellow]none, stage skipped[/yellow]")
        )
    secure = "shred" if tools.deleter.shred_binary else "in-process overwrite"
    console.print(f"[bold]Secure deletion:[/bold] {secure}")


@cli.command()
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def fingerprint(ctx: click.Context, files: Tuple[Path, ...]) -> None:
    """
    Print the composite fingerprint of each FILE.

    Files are classified in lexicographic order, exactly as a run would, so
    the output shows which of them would be removed as duplicates.
    """
    config = _load_config(ctx)
    metadata = MetadataChain.from_names(
        config.get("tools.metadata", ["pillow"]), config.get_command_timeout()
    )
    builder = FingerprintBuilder(config, metadata)
    index = DuplicateIndex()

    rows: List[Tuple[Path, Fingerprint, str]] = []
    failed = 0
    for path in sorted(Path(f) for f in files):
        try:
            record = builder.build_record(path)
            fp = builder.fingerprint(record)
        except (FileFailure, ToolError) as e:
            console.print(f"[red]✗ {path.name}:[/red] {e}")
            failed += 1
            continue

        admission = index.admit(path, fp, record.content_hash)
        if admission.admitted:
            classification = "canonical"
        else:
            classification = f"{admission.kind} duplicate of {admission.canonical.name}"
        rows.append((path, fp, classification))

    if rows:
        RunReport(console).show_fingerprints(rows)
    if failed:
        sys.exit(EXIT_FAILURES)


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
