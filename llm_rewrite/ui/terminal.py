"""
Rich-based terminal user interface.

Shows per-segment progress while a document is being rewritten, then the
final (or partial) text and any errors with guidance.
"""

from typing import Optional
import time

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from ..transform.errors import BackendConfigurationError, OversizedPayloadError
from ..transform.pipeline import TransformOutcome

PREVIEW_CHARS = 300


class TerminalUI:
    """
    Rich-based terminal interface for the rewrite application.

    The progress methods are synchronous so `update_progress` can be handed
    straight to the transformer as its progress callback.
    """

    def __init__(self, console: Optional[Console] = None, show_partial: bool = True):
        """Initialize the terminal UI."""
        self.console = console or Console()
        self.show_partial = show_partial
        self._start_time: Optional[float] = None
        self._progress_context: Optional[Progress] = None
        self._current_task = None
        self.last_partial_text = ""

    async def show_welcome(self, source: str, characters: int, segments: int, provider: str) -> None:
        """Summarize the job before it starts."""
        table = Table(box=box.ROUNDED, show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Source", source)
        table.add_row("Characters", f"{characters:,}")
        table.add_row("Segments", str(segments))
        table.add_row("Backend", provider)

        self.console.print(
            Panel(
                table,
                title="LLM Rewrite",
                title_align="center",
                border_style="cyan",
                padding=(1, 2)
            )
        )
        if segments > 1:
            self.console.print(
                "📄 [cyan]Large document: processed parts appear as they complete. "
                "Press Ctrl+C to cancel.[/cyan]"
            )

    def start_progress(self, total: int) -> None:
        """Start the progress bar for `total` segments."""
        self._stop_progress()
        self._start_time = time.time()
        self._progress_context = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console
        )
        self._progress_context.__enter__()
        self._current_task = self._progress_context.add_task(
            f"🤖 Rewriting {total} part(s)...", total=total
        )

    def update_progress(self, current: int, total: int, partial_text: str) -> None:
        """Progress callback: one call per finished segment."""
        self.last_partial_text = partial_text
        if self._progress_context is None:
            self.start_progress(total)

        percentage = round(current / total * 100) if total else 100
        self._progress_context.update(
            self._current_task,
            completed=current,
            description=f"🤖 Part {current} of {total} ({percentage}% complete)",
        )

        if self.show_partial and total > 1 and partial_text.strip():
            preview = partial_text[-PREVIEW_CHARS:]
            if len(partial_text) > PREVIEW_CHARS:
                preview = "…" + preview
            # Document text, never markup
            self._progress_context.console.print(Text(preview, style="dim"))

    def _stop_progress(self):
        """Stop the current progress indicator."""
        if self._progress_context:
            self._progress_context.__exit__(None, None, None)
            self._progress_context = None
            self._current_task = None

    async def show_outcome(self, outcome: TransformOutcome) -> None:
        """Display the final text, or whatever was produced before a stop."""
        self._stop_progress()

        if outcome.completed:
            await self.show_result(outcome.text, outcome.processing_time)
        elif outcome.cancelled:
            await self.show_cancelled(outcome)
        else:
            await self.show_error(outcome.error or Exception("Transformation failed"))
            if outcome.text.strip():
                self._show_partial(outcome)

    async def show_result(self, text: str, processing_time: float = 0.0) -> None:
        """Display the finished text."""
        self._stop_progress()
        self.console.print(
            Panel(
                Text(text),
                title=f"Rewritten text ({processing_time:.1f}s)",
                title_align="center",
                border_style="green",
                padding=(1, 2)
            )
        )

    async def show_cancelled(self, outcome: TransformOutcome) -> None:
        self._stop_progress()
        self.console.print(
            f"[yellow]⚠️  {outcome.cancel_reason or 'Transformation cancelled.'} "
            f"({outcome.segments_completed} of {outcome.segments_total} parts done)[/yellow]"
        )
        if outcome.text.strip():
            self._show_partial(outcome)

    def _show_partial(self, outcome: TransformOutcome) -> None:
        self.console.print(
            Panel(
                Text(outcome.text),
                title=f"Partial result ({outcome.progress_percent}% complete)",
                title_align="center",
                border_style="yellow",
                padding=(1, 2)
            )
        )

    async def show_error(self, error: Exception) -> None:
        """
        Display error message with Rich formatting.

        Args:
            error: Exception to display
        """
        self._stop_progress()

        error_message = str(error)
        lowered = error_message.lower()

        # Provide helpful guidance for common errors
        if isinstance(error, BackendConfigurationError) or "api key" in lowered:
            guidance = "\n\n💡 Set the API key for the selected model, or pick another with --model."
        elif isinstance(error, OversizedPayloadError):
            guidance = "\n\n💡 Try a smaller --chunk-size."
        elif "timeout" in lowered:
            guidance = "\n\n💡 Try again - the service might be temporarily slow."
        elif "connection" in lowered or "network" in lowered:
            guidance = "\n\n💡 Check your internet connection."
        else:
            guidance = ""

        panel = Panel(
            Text(f"❌ {error_message}{guidance}", style="red"),
            title="Error",
            title_align="center",
            border_style="red",
            padding=(1, 2)
        )

        self.console.print(panel)
