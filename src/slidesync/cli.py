"""SlideSync CLI entry point.

Runs one alignment of a talk recording against two PDF decks behind a single
``slidesync`` command with a Rich progress bar, a results table and
human-readable error panels. Nothing is written to disk; ``--json`` prints
the events to stdout.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from slidesync.config import ExecutionMode, PipelineSettings
from slidesync.correction import find_ordering_issues
from slidesync.errors import SlideSyncError
from slidesync.inference.client import ChatCompletionsClient
from slidesync.models import AlignmentResult, Confidence
from slidesync.pipeline import AlignmentPipeline, PipelineStatus

app = typer.Typer(
    name="slidesync",
    help="SlideSync: find when each slide of two consecutive decks first appears in a recording.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

# Valid input formats
_VALID_VIDEO_EXTS = {".mp4", ".mov", ".webm", ".mkv", ".avi"}
_VALID_DECK_EXTS = {".pdf"}

_CONFIDENCE_STYLES = {
    Confidence.HIGH: "green",
    Confidence.MEDIUM: "yellow",
    Confidence.LOW: "yellow",
    Confidence.UNKNOWN: "dim",
}


def _input_error(message: str) -> None:
    err_console.print(Panel(message, title="[red]Input Error[/red]", border_style="red"))
    raise typer.Exit(1)


def _validate_input(path: Path, valid_exts: set[str], kind: str) -> None:
    """Extension first, then existence, so a wrong file type is reported as such."""
    if path.suffix.lower() not in valid_exts:
        _input_error(
            f"Unsupported {kind} format: [bold]{path.suffix or '(none)'}[/bold]\n"
            f"Supported formats: {', '.join(sorted(valid_exts))}"
        )
    if not path.exists():
        _input_error(
            f"File not found: [bold]{path}[/bold]\n"
            f"Check that the path is correct and the file is accessible."
        )


def _render_results(result: AlignmentResult) -> Table:
    table = Table(title=f"{len(result.events)} transitions", show_lines=False)
    table.add_column("Time", style="bold cyan", no_wrap=True)
    table.add_column("Deck", justify="center")
    table.add_column("Page", justify="center")
    table.add_column("Title")
    table.add_column("Confidence")
    table.add_column("Reasoning", style="dim italic")
    for event in result.events:
        style = _CONFIDENCE_STYLES[event.confidence]
        table.add_row(
            event.timestamp,
            f"{event.source_id}",
            f"#{event.page_number}",
            event.title,
            f"[{style}]{event.confidence.value}[/{style}]",
            event.reasoning,
        )
    return table


@app.command()
def main(
    video: Annotated[
        Path,
        typer.Argument(
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
            help="Recording of both talks (MP4, MOV, WebM, MKV or AVI).",
        ),
    ],
    deck1: Annotated[
        Path,
        typer.Option("--deck1", resolve_path=True, help="PDF of the deck presented first."),
    ],
    deck2: Annotated[
        Path,
        typer.Option("--deck2", resolve_path=True, help="PDF of the deck presented second."),
    ],
    endpoint: Annotated[
        Optional[str],
        typer.Option("--endpoint", help="Base URL of an OpenAI-compatible server (default: SLIDESYNC_ENDPOINT)."),
    ] = None,
    model: Annotated[
        Optional[str],
        typer.Option("--model", help="Model name sent with the request (default: SLIDESYNC_MODEL)."),
    ] = None,
    frames: Annotated[
        int,
        typer.Option("--frames", min=1, help="Target number of sampled video frames."),
    ] = 700,
    sequential: Annotated[
        bool,
        typer.Option("--sequential", help="Render slides and sample video one after the other."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print transitions as JSON instead of a table."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log debug details, including raw model output on parse failure."),
    ] = False,
) -> None:
    """Align a recording with two consecutive slide decks."""
    # --- Input validation ---
    _validate_input(video, _VALID_VIDEO_EXTS, "video")
    _validate_input(deck1, _VALID_DECK_EXTS, "deck")
    _validate_input(deck2, _VALID_DECK_EXTS, "deck")

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )

    settings = PipelineSettings(
        target_frame_count=frames,
        execution_mode=ExecutionMode.SEQUENTIAL if sequential else ExecutionMode.CONCURRENT,
    )
    pipeline = AlignmentPipeline(ChatCompletionsClient(base_url=endpoint, model=model), settings=settings)

    if not as_json:
        console.print(f"\n[bold cyan]SlideSync[/bold cyan] [dim]{video.name}[/dim]\n")

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=err_console,
            transient=True,
        ) as progress:
            task = progress.add_task("Starting...", total=100)

            def _on_status(status: PipelineStatus) -> None:
                progress.update(task, description=status.message, completed=status.progress)

            result = pipeline.run(video, deck1, deck2, on_status=_on_status)
    except SlideSyncError as e:
        # Typed pipeline errors become a Rich panel; never show tracebacks
        err_console.print(Panel(
            str(e),
            title="[red]Alignment Error[/red]",
            border_style="red",
        ))
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([event.to_dict() for event in result.events], ensure_ascii=False, indent=2))
        return

    console.print(_render_results(result))
    for issue in find_ordering_issues(result.events):
        console.print(f"[yellow]Warning:[/] {issue}")
    console.print(
        f"\n[green]Aligned[/green] {len(result.frames)} frames against "
        f"{len(result.slides)} slides.\n"
    )
