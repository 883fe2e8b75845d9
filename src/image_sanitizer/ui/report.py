"""
End-of-run reporting.

Renders the run summary and the aggregated failure report with rich.
"""

from pathlib import Path
from typing import List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from image_sanitizer.core.models import Fingerprint, RunSummary, TerminalState

_STATE_STYLES = {
    TerminalState.COMMITTED: "green",
    TerminalState.SKIPPED_DUPLICATE: "yellow",
    TerminalState.ALREADY_SANITIZED: "cyan",
    TerminalState.PLANNED: "blue",
    TerminalState.FAILED: "red",
}


class RunReport:
    """Final report of a run."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show(self, summary: RunSummary, show_files: bool = False) -> None:
        """
        Print the summary table, then failures (if any).

        Args:
            summary: Outcome of the run
            show_files: Also list every file with its terminal state
        """
        self._show_summary(summary)
        if show_files:
            self._show_files(summary)
        self._show_failures(summary)

        if summary.interrupted:
            self.console.print(
                "\n[yellow]Interrupted: files that had not finished were left untouched.[/yellow]"
            )
        elif len(summary.failures):
            self.console.print(
                f"\n[red]{len(summary.failures)} file(s) failed and were left untouched.[/red]"
            )
        elif summary.dry_run:
            self.console.print("\n[blue]Dry run: nothing on disk was changed.[/blue]")
        else:
            self.console.print("\n[green]All files processed successfully.[/green]")

    def _show_summary(self, summary: RunSummary) -> None:
        counts = summary.counts()
        before = sum(r.bytes_before or 0 for r in summary.by_state(TerminalState.COMMITTED))
        after = sum(r.bytes_after or 0 for r in summary.by_state(TerminalState.COMMITTED))
        removed = sum(r.bytes_before or 0 for r in summary.by_state(TerminalState.SKIPPED_DUPLICATE))

        title = "Sanitization Summary" + (" (dry run)" if summary.dry_run else "")
        table = Table(title=title, box=box.ROUNDED)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green", justify="right")

        table.add_row("Directory", str(summary.root))
        for state in TerminalState:
            if state is TerminalState.PLANNED and not summary.dry_run:
                continue
            table.add_row(state.value.replace("-", " ").capitalize(), str(counts[state.value]))
        table.add_row("Retries", str(sum(r.retries for r in summary.results)))
        if before:
            table.add_row("Sanitized size", f"{_format_bytes(before)} -> {_format_bytes(after)}")
        if removed:
            label = "Duplicates found" if summary.dry_run else "Duplicates removed"
            table.add_row(label, _format_bytes(removed))

        self.console.print(table)

    def _show_files(self, summary: RunSummary) -> None:
        table = Table(title="Files", box=box.SIMPLE, header_style="bold magenta")
        table.add_column("File", style="cyan")
        table.add_column("State")
        table.add_column("Detail", style="dim")

        for result in summary.results:
            state = result.state or TerminalState.FAILED
            style = _STATE_STYLES[state]
            if result.duplicate_of is not None:
                detail = f"{result.duplicate_kind} duplicate of {result.duplicate_of.name}"
            elif result.final_path is not None:
                detail = f"-> {result.final_path.name}"
            else:
                detail = result.reason.value if result.reason else ""
            table.add_row(result.input_path.name, f"[{style}]{state.value}[/{style}]", detail)

        self.console.print(table)

    def _show_failures(self, summary: RunSummary) -> None:
        if not len(summary.failures):
            return

        table = Table(
            title="Failure Report",
            box=box.DOUBLE,
            show_header=True,
            header_style="bold red",
        )
        table.add_column("File", style="cyan")
        table.add_column("Reason", style="red")
        table.add_column("Attempts", justify="right")
        table.add_column("Message", style="dim")

        for entry in summary.failures:
            table.add_row(
                _relative(entry.path, summary.root),
                entry.reason.value,
                str(entry.attempts),
                entry.message,
            )

        self.console.print(table)

    def show_fingerprints(self, rows: List[Tuple[Path, Fingerprint, str]]) -> None:
        """Print the component hashes of each file with its classification."""
        table = Table(title="Fingerprints", box=box.ROUNDED)
        table.add_column("File", style="cyan")
        table.add_column("Structural")
        table.add_column("Histogram")
        table.add_column("Provenance")
        table.add_column("Classification", style="yellow")

        for path, fingerprint, classification in rows:
            table.add_row(
                path.name,
                fingerprint.structural,
                fingerprint.histogram,
                fingerprint.provenance,
                classification,
            )

        self.console.print(table)


def _relative(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def _format_bytes(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"
