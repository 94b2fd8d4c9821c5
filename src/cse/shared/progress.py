"""Rich progress display for analysis runs."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from cse.schemas.suggestions import SuggestionType

console = Console()


class AnalysisProgress:
    """One spinner line per suggestion type being analyzed."""

    def __init__(self) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_ids: dict[SuggestionType, int] = {}

    def __enter__(self) -> "AnalysisProgress":
        self._progress.__enter__()
        return self

    def __exit__(self, *args: object) -> None:
        self._progress.__exit__(*args)

    def start_type(self, suggestion_type: SuggestionType) -> None:
        tid = self._progress.add_task(f"[cyan]{suggestion_type.value}[/]", total=None)
        self._task_ids[suggestion_type] = tid

    def finish_type(self, suggestion_type: SuggestionType, count: int, cached: bool) -> None:
        """Mark a type as complete."""
        if suggestion_type in self._task_ids:
            note = " (cached)" if cached else ""
            self._progress.update(
                self._task_ids[suggestion_type],
                description=f"[green]✓ {suggestion_type.value}[/] — {count} suggestions{note}",
                completed=True,
            )

    def fail_type(self, suggestion_type: SuggestionType, error: str) -> None:
        """Mark a type as failed or cancelled."""
        if suggestion_type in self._task_ids:
            self._progress.update(
                self._task_ids[suggestion_type],
                description=f"[red]✗ {suggestion_type.value}: {error}[/]",
                completed=True,
            )

    def print_phase(self, label: str) -> None:
        """Print a phase header outside the progress display."""
        self._progress.console.print(Panel(f"[bold]{label}[/bold]", style="blue"))
