"""BibleForge CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from bibleforge.observability import close_file_logging, configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

if TYPE_CHECKING:
    from bibleforge.models.bible import Brief, PipelineResult
    from bibleforge.models.phase import PhaseUpdateEvent
    from bibleforge.pipeline.config import ProjectConfig
    from bibleforge.pipeline.progress import ProgressSink
    from bibleforge.providers.base import TextGenerator

app = typer.Typer(
    name="bibleforge",
    help="BibleForge: phase-scheduled story bible generation.",
    no_args_is_help=True,
)
console = Console()

# Exit code when the wall-clock budget ran out before the bible was assembled
TIMEOUT_EXIT_CODE = 2

# Global state for logging flags (set by callback, used by commands)
_verbose: int = 0
_log_enabled: bool = False


def _is_interactive_tty() -> bool:
    """Check if stdin/stdout are connected to a TTY."""
    return sys.stdin.isatty() and sys.stdout.isatty()


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Enable file logging to {project}/logs/ (debug.jsonl, llm_calls.jsonl).",
        ),
    ] = False,
) -> None:
    """BibleForge: phase-scheduled story bible generation."""
    global _verbose, _log_enabled
    _verbose = verbose
    _log_enabled = log

    # Console logging only; file logging is configured once the project is known
    configure_logging(verbosity=verbose)


def _configure_project_logging(project_path: Path) -> None:
    """Configure file logging if --log flag was set."""
    if _log_enabled:
        configure_logging(verbosity=_verbose, log_to_file=True, project_path=project_path)
        atexit.register(close_file_logging)


def _load_config(project_path: Path) -> ProjectConfig:
    """Load project.yaml, falling back to defaults when there is none.

    Raises:
        typer.Exit: If project.yaml exists but is invalid.
    """
    from bibleforge.pipeline.config import (
        CONFIG_FILENAME,
        ProjectConfigError,
        create_default_config,
        load_project_config,
    )

    if not (project_path / CONFIG_FILENAME).exists():
        return create_default_config(project_path.resolve().name or "bibleforge")

    try:
        return load_project_config(project_path)
    except ProjectConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _create_generator(
    config: ProjectConfig, provider: str | None, project_path: Path
) -> TextGenerator:
    """Build the AI collaborator for the resolved provider.

    Wraps it in a LoggingGenerator when --log is set.

    Raises:
        GenerationError: If the provider string can't be resolved.
    """
    from bibleforge.observability import LLMLogger
    from bibleforge.providers import ChatModelGenerator, LoggingGenerator, split_provider_string

    provider_name, model = split_provider_string(config.resolved_provider(provider))
    generator: TextGenerator = ChatModelGenerator(provider_name, model)
    if _log_enabled:
        generator = LoggingGenerator(generator, LLMLogger(project_path))
    return generator


def _print_event(event: PhaseUpdateEvent) -> None:
    """Render one phase update as a console line."""
    position = f"[dim]{event.overall_progress:5.1f}%[/dim]"
    if event.type == "phase_started":
        console.print(f"{position} [cyan]▸[/cyan] {event.phase_name}")
    elif event.type == "phase_completed":
        console.print(f"{position} [green]✓[/green] {event.phase_name}")
    elif event.type == "phase_failed":
        console.print(f"{position} [red]✗[/red] {event.phase_name}: {escape(event.message)}")
    elif _verbose and event.message:
        console.print(f"{position}   [dim]{escape(event.message)}[/dim]")


async def _confirm_batch_retry(batch_index: int, size: int, error: str) -> bool:
    """Ask whether to retry a batch the AI service could not produce.

    Only asks on an interactive terminal; otherwise the batch keeps its
    stand-ins.
    """
    console.print(
        f"[yellow]Warning:[/yellow] batch {batch_index + 1} ({size} characters) "
        f"could not be generated: {escape(error)}"
    )
    if not _is_interactive_tty():
        return False
    return await asyncio.to_thread(typer.confirm, "Retry this batch?", default=True)


async def _run_generate(
    brief: Brief,
    project_path: Path,
    config: ProjectConfig,
    generator: TextGenerator,
    *,
    owner: str,
    save: bool,
    time_budget: float | None,
) -> None:
    """Run the pipeline and print the outcome.

    Raises:
        typer.Exit: On timeout or when both generation tiers failed.
    """
    from bibleforge.artifacts import ArtifactStore
    from bibleforge.pipeline import (
        CallbackProgressSink,
        FanOutProgressSink,
        FatalPipelineError,
        HttpProgressSink,
        StoryBiblePipeline,
        generate_story_bible,
    )

    log = get_logger(__name__)

    sinks: list[ProgressSink] = [CallbackProgressSink(_print_event)]
    http_sink: HttpProgressSink | None = None
    url = config.progress.resolved_url()
    if url:
        http_sink = HttpProgressSink(url, timeout=config.progress.timeout)
        sinks.append(http_sink)
        log.debug("progress_endpoint_configured", url=url)

    pipeline = StoryBiblePipeline(
        generator,
        config,
        sink=FanOutProgressSink(sinks),
        on_batch_unavailable=_confirm_batch_retry,
    )
    store = ArtifactStore(project_path / "artifacts") if save else None

    try:
        outcome = await asyncio.wait_for(
            generate_story_bible(
                brief, generator, config=config, store=store, owner_id=owner, pipeline=pipeline
            ),
            timeout=time_budget,
        )
    except TimeoutError as e:
        _print_partial(pipeline.current_run.snapshot() if pipeline.current_run else {})
        raise typer.Exit(TIMEOUT_EXIT_CODE) from e
    except FatalPipelineError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    finally:
        if http_sink is not None:
            await http_sink.aclose()

    _print_result(outcome.result)
    if outcome.artifact_id:
        console.print(f"  Saved: [bold]{outcome.artifact_id}[/bold] (owner: {owner})")
    elif save:
        console.print("[yellow]Warning:[/yellow] story bible was generated but not saved")


def _print_result(result: PipelineResult) -> None:
    outputs = result.phase_outputs
    stats = result.stats
    characters = outputs.get("main_characters") or []

    table = Table(title=str(outputs.get("series_title", "Story Bible")))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Provenance", stats.provenance)
    table.add_row("Story type", stats.story_type)
    table.add_row("Characters", str(len(characters)))
    table.add_row("Fallback characters", str(stats.fallback_entities))
    table.add_row("Failed phases", ", ".join(stats.failed_phases) or "-")
    table.add_row("LLM calls", str(stats.llm_calls))
    table.add_row("Duration", f"{stats.duration_seconds:.1f}s")
    if stats.tier1_error:
        table.add_row("Tier 1 error", escape(stats.tier1_error))

    console.print()
    console.print(table)


def _print_partial(outputs: dict[str, Any]) -> None:
    console.print("[yellow]Time budget exhausted.[/yellow] Partial outputs:")
    if not outputs:
        console.print("  [dim](nothing produced yet)[/dim]")
        return
    for key, value in outputs.items():
        size = f" ({len(value)} items)" if isinstance(value, list) else ""
        console.print(f"  [cyan]{key}[/cyan]{size}")


# =============================================================================
# Commands
# =============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from bibleforge import __version__

    console.print(f"BibleForge v{__version__}")


@app.command()
def init(
    name: Annotated[str, typer.Argument(help="Project name")],
    path: Annotated[
        Path,
        typer.Option("--path", "-p", help="Parent directory for the project."),
    ] = Path(),
) -> None:
    """Initialize a new story bible project.

    Creates a project directory with project.yaml and an artifacts/ folder.
    """
    from bibleforge.pipeline.config import write_default_config

    project_path = path / name
    if project_path.exists():
        console.print(f"[red]Error:[/red] Directory '{project_path}' already exists")
        raise typer.Exit(1)

    write_default_config(project_path, name)
    (project_path / "artifacts").mkdir()

    console.print(f"[green]✓[/green] Created project: [bold]{name}[/bold]")
    console.print(f"  Location: {project_path.absolute()}")
    console.print()
    console.print("Next steps:")
    console.print(f"  cd {project_path}")
    console.print('  bibleforge generate "Your synopsis..." --theme "..."')


@app.command()
def phases() -> None:
    """List the phases of a full generation run, in order."""
    from bibleforge.pipeline.phases import TIER1_PHASES

    table = Table(title="Generation Phases")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    for index, (phase_id, phase_name) in enumerate(TIER1_PHASES, start=1):
        table.add_row(str(index), phase_id, phase_name)
    console.print(table)


@app.command()
def generate(
    synopsis: Annotated[str, typer.Argument(help="Story premise.")],
    theme: Annotated[str, typer.Option("--theme", "-t", help="Central theme.")] = "",
    protagonist: Annotated[
        str | None,
        typer.Option("--protagonist", help="Description of the lead, name first."),
    ] = None,
    character: Annotated[
        list[str] | None,
        typer.Option(
            "--character", "-c", help="Description of a character to include (repeatable)."
        ),
    ] = None,
    setting: Annotated[
        str | None, typer.Option("--setting", help="World description to preserve.")
    ] = None,
    count: Annotated[
        int | None,
        typer.Option("--count", "-n", min=0, help="Total cast size (default: model decides)."),
    ] = None,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            help="Provider override (e.g., openai/gpt-4o). Also read from BF_PROVIDER.",
        ),
    ] = None,
    project: Annotated[
        Path,
        typer.Option("--project", "-p", help="Project directory."),
    ] = Path(),
    time_budget: Annotated[
        float | None,
        typer.Option(
            "--time-budget",
            min=1.0,
            help="Wall-clock limit in seconds; partial outputs are reported on timeout.",
        ),
    ] = None,
    owner: Annotated[
        str, typer.Option("--owner", help="Owner id the artifact is saved under.")
    ] = "local",
    save: Annotated[
        bool, typer.Option("--save/--no-save", help="Save the story bible to artifacts/.")
    ] = True,
) -> None:
    """Generate a story bible from a synopsis."""
    from pydantic import ValidationError

    from bibleforge.models.bible import Brief
    from bibleforge.providers.base import GenerationError

    try:
        brief = Brief(
            synopsis=synopsis.strip(),
            theme=theme,
            protagonist=protagonist,
            characters=character or [],
            setting=setting,
            target_count=count,
        )
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid brief: {escape(str(e))}")
        raise typer.Exit(1) from e

    _configure_project_logging(project)
    config = _load_config(project)

    try:
        generator = _create_generator(config, provider, project)
    except GenerationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    console.print(f"[bold]Generating story bible[/bold] with [cyan]{generator.model_name}[/cyan]")
    asyncio.run(
        _run_generate(
            brief,
            project,
            config,
            generator,
            owner=owner,
            save=save,
            time_budget=time_budget,
        )
    )


@app.command()
def show(
    artifact_id: Annotated[
        str | None, typer.Argument(help="Artifact id; lists saved ids if omitted.")
    ] = None,
    project: Annotated[
        Path,
        typer.Option("--project", "-p", help="Project directory."),
    ] = Path(),
    owner: Annotated[str, typer.Option("--owner", help="Owner id.")] = "local",
) -> None:
    """Show a saved story bible, or list saved ids."""
    from ruamel.yaml import YAML

    from bibleforge.artifacts import ArtifactStore, ArtifactStoreError

    store = ArtifactStore(project / "artifacts")
    if artifact_id is None:
        try:
            ids = store.list_ids(owner)
        except ArtifactStoreError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise typer.Exit(1) from e
        if not ids:
            console.print("[dim]No saved story bibles.[/dim]")
            return
        for saved_id in ids:
            console.print(saved_id)
        return

    try:
        data = store.load(artifact_id, owner)
    except ArtifactStoreError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    yaml_writer = YAML()
    yaml_writer.default_flow_style = False
    yaml_writer.dump(data, sys.stdout)


if __name__ == "__main__":
    app()
