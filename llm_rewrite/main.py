"""
Main application entry point for LLM Rewrite.

This module provides the command-line interface and wires the document
source, the rewrite backend, the chunked transformation pipeline and the
terminal UI together.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, List

import click
from rich.console import Console
from rich.logging import RichHandler
import pyperclip

from . import __version__
from .transform.backends import RewriteBackend, create_backend
from .transform.cancellation import CancellationToken
from .transform.config import TransformConfig
from .transform.errors import RewriteError
from .transform.formatting import PRESET_INSTRUCTIONS, build_instructions
from .transform.pipeline import TextTransformer, TransformOutcome
from .ui.terminal import TerminalUI

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


class RewriteApp:
    """
    Main application class that coordinates all components.

    Handles one rewrite session: read the document, run the transformer with
    live progress, then show, save or copy the result.
    """

    def __init__(
        self,
        config: Optional[TransformConfig] = None,
        backend: Optional[RewriteBackend] = None,
        ui: Optional[TerminalUI] = None,
    ):
        """Initialize the rewrite application."""
        self.config = (config or TransformConfig.from_env()).validate()
        self.backend = backend or create_backend(
            self.config.backend_selector, timeout=self.config.request_timeout
        )
        self.ui = ui or TerminalUI()
        self.transformer = TextTransformer(self.backend, self.config)
        self.console = Console()

        self._cancellation: Optional[CancellationToken] = None

    def _handle_interrupt(self, signum=None, frame=None):
        """Cancel the running transformation; partial output is kept."""
        if self._cancellation and not self._cancellation.cancelled:
            self._cancellation.cancel("Transformation cancelled by user.")

    def _install_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, self._handle_interrupt)
            loop.add_signal_handler(signal.SIGTERM, self._handle_interrupt)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support add_signal_handler
            signal.signal(signal.SIGINT, self._handle_interrupt)

    def _remove_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)
        except (NotImplementedError, RuntimeError):
            signal.signal(signal.SIGINT, signal.default_int_handler)

    async def run_session(
        self,
        text: str,
        instructions: str,
        source: str = "<stdin>",
        auxiliary_context: Optional[dict] = None,
        output_path: Optional[Path] = None,
        copy_to_clipboard: bool = False,
    ) -> TransformOutcome:
        """
        Run a complete rewrite session.

        Returns:
            The TransformOutcome of the run.
        """
        segments = self.transformer.split(text) if text.strip() else []
        await self.ui.show_welcome(
            source, len(text), len(segments), self.backend.get_provider_name()
        )

        self._cancellation = CancellationToken()
        self._install_signal_handlers()
        try:
            if segments:
                self.ui.start_progress(len(segments))
            outcome = await self.transformer.transform(
                text,
                instructions,
                on_progress=self.ui.update_progress,
                cancellation=self._cancellation,
                auxiliary_context=auxiliary_context,
            )
        finally:
            self._remove_signal_handlers()
            await self.backend.aclose()

        await self.ui.show_outcome(outcome)

        if outcome.completed:
            if output_path:
                self._write_output(output_path, outcome.text)
            if copy_to_clipboard:
                self._copy_to_clipboard(outcome.text)
        return outcome

    def _write_output(self, path: Path, text: str) -> None:
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as e:
            self.console.print(f"[red]❌ Could not write {path}: {e}[/red]")
            return
        self.console.print(f"💾 Saved to [bold]{path}[/bold]")

    def _copy_to_clipboard(self, text: str) -> None:
        """
        Copy text to system clipboard.

        Args:
            text: Text to copy
        """
        try:
            pyperclip.copy(text)
            self.console.print("📋 Copied to clipboard!")
        except pyperclip.PyperclipException as e:
            self.console.print(f"[yellow]⚠️  Could not copy to clipboard: {e}[/yellow]")


def read_document(input_path: str) -> str:
    """Read the document from a file path, or stdin for '-'."""
    if input_path == "-":
        return sys.stdin.read()
    return Path(input_path).read_text(encoding="utf-8")


def exit_code_for(outcome: TransformOutcome) -> int:
    if outcome.completed:
        return EXIT_OK
    if outcome.cancelled:
        return EXIT_CANCELLED
    return EXIT_FAILED


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


@click.command()
@click.version_option(version=__version__)
@click.argument('input_path', metavar='INPUT', default='-')
@click.option('--model', '-m', default=None, help='Backend selector: model name, rewrite endpoint URL, or "mock"')
@click.option('--instructions', '-i', default=None, help='Custom rewrite instructions')
@click.option(
    '--preset',
    default=None,
    help='Named rewrite preset',
    type=click.Choice(sorted(PRESET_INSTRUCTIONS))
)
@click.option('--style-ref', 'style_refs', multiple=True, help='Style reference name (repeatable)')
@click.option('--content-ref', 'content_refs', multiple=True, help='Content reference name (repeatable)')
@click.option('--chunk-size', type=click.IntRange(min=1), default=None, help='Maximum characters per request')
@click.option('--max-retries', type=click.IntRange(min=0), default=None, help='Retries per part for transient errors')
@click.option('--retry-delay', type=click.IntRange(min=0), default=None, help='Delay between retries in milliseconds')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), default=None, help='Write the result to a file')
@click.option('--copy', 'copy_to_clipboard', is_flag=True, help='Copy the result to the clipboard')
@click.option('--raw-markdown', is_flag=True, help='Keep markdown markers in the output')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def main(
    input_path: str,
    model: Optional[str],
    instructions: Optional[str],
    preset: Optional[str],
    style_refs: List[str],
    content_refs: List[str],
    chunk_size: Optional[int],
    max_retries: Optional[int],
    retry_delay: Optional[int],
    output: Optional[Path],
    copy_to_clipboard: bool,
    raw_markdown: bool,
    verbose: bool,
) -> None:
    """
    LLM Rewrite - AI rewriting for documents of any size.

    Reads INPUT (a text file, or '-' for stdin), splits it into parts the
    selected model can handle, rewrites each part in order and prints the
    reassembled result. Ctrl+C cancels and keeps the parts already done.
    """
    configure_logging(verbose)

    try:
        text = read_document(input_path)
        config = TransformConfig.from_env().with_overrides(
            backend_selector=model,
            max_chunk_size=chunk_size,
            retry_bound=max_retries,
            retry_delay_ms=retry_delay,
            strip_markdown=False if raw_markdown else None,
        )
        app = RewriteApp(config=config)
    except (OSError, RewriteError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)

    auxiliary_context = {
        "preset": preset,
        "style_references": list(style_refs),
        "content_references": list(content_refs),
    }
    combined_instructions = build_instructions(instructions, preset)

    outcome = asyncio.run(
        app.run_session(
            text,
            combined_instructions,
            source="<stdin>" if input_path == "-" else input_path,
            auxiliary_context=auxiliary_context,
            output_path=output,
            copy_to_clipboard=copy_to_clipboard,
        )
    )
    sys.exit(exit_code_for(outcome))


if __name__ == "__main__":
    main()
