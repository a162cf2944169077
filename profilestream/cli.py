"""Command-line interface for profilestream.

Built with Click for commands and Rich for terminal output.

Usage:
    profilestream config set-key
    profilestream analyze recording.mp4
    profilestream analyze my_profile.mp4 --kind self --json
    profilestream list
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from profilestream import __version__
from profilestream.ai.client import AIClient, AIClientError
from profilestream.ai.inference import StreamingProfileAnalyzer
from profilestream.config import (
    APIKeyNotFoundError,
    AppConfig,
    ConfigurationError,
    KeyStorageBackend,
    _key_manager,
    configure_api_key,
    get_api_key,
    get_config,
)
from profilestream.controller import StreamingAnalysisController, StreamingState
from profilestream.frames import FfmpegFrameSource
from profilestream.models import MatchProfile, ProfileKind, SelfProfile, StreamingPhase
from profilestream.store import JsonRecordStore
from profilestream.utils.logging import setup_logging
from profilestream.variants import (
    MatchAnalysisSession,
    SelfAnalysisSession,
    build_match_hooks,
    build_self_hooks,
)

logger = logging.getLogger(__name__)

console = Console()

PHASE_LABELS = {
    StreamingPhase.IDLE: "Waiting",
    StreamingPhase.EXTRACTING: "Extracting frames",
    StreamingPhase.CHUNK_1: "Reading the basics",
    StreamingPhase.CHUNK_2: "Forming first impressions",
    StreamingPhase.CHUNK_3: "Looking closer at photos and prompts",
    StreamingPhase.CHUNK_4: "Putting it all together",
    StreamingPhase.CONSOLIDATING: "Saving results",
    StreamingPhase.COMPLETE: "Done",
    StreamingPhase.ABORTED: "Stopped",
    StreamingPhase.ERROR: "Failed",
}


# =============================================================================
# Helper Functions
# =============================================================================


def print_success(text: str) -> None:
    console.print(f"[green]✓[/green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[red]✗[/red] {text}")


def _load_config(ctx: click.Context) -> AppConfig:
    config_path = ctx.obj.get("config_path")
    return get_config(Path(config_path) if config_path else None)


def _data_dir(config: AppConfig, override: str | None) -> Path:
    return Path(override) if override else config.storage.resolve_data_dir()


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="profilestream")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--config", "-c", type=click.Path(dir_okay=False), help="Path to config file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """profilestream - progressive analysis of dating profile recordings.

    Quick start:
        profilestream config set-key
        profilestream analyze recording.mp4
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config
    setup_logging(level="DEBUG" if verbose else "WARNING")


# =============================================================================
# Analyze Command
# =============================================================================


@cli.command()
@click.argument("video", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--kind",
    type=click.Choice([k.value for k in ProfileKind]),
    default=ProfileKind.MATCH.value,
    show_default=True,
    help="Analyze someone else's profile (match) or your own (self)",
)
@click.option("--data-dir", type=click.Path(file_okay=False), help="Where records are stored")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def analyze(ctx: click.Context, video: Path, kind: str, data_dir: str | None, as_json: bool) -> None:
    """Analyze a screen recording of a dating profile."""
    config = _load_config(ctx)

    try:
        client = AIClient(api_key=get_api_key(config), settings=config.ai)
    except (APIKeyNotFoundError, ConfigurationError) as e:
        print_error(str(e))
        raise SystemExit(1) from e

    profile_kind = ProfileKind(kind)
    store_dir = _data_dir(config, data_dir) / ("matches" if profile_kind == ProfileKind.MATCH else "identity")
    analyzer = StreamingProfileAnalyzer(profile_kind, client)

    try:
        state = asyncio.run(
            _run_analysis(profile_kind, video, JsonRecordStore(store_dir), analyzer, config)
        )
    except KeyboardInterrupt:
        print_warning("Analysis stopped. Partial results were kept where possible.")
        raise SystemExit(130)

    if state.phase == StreamingPhase.ERROR:
        print_error(state.error or "Analysis failed")
        raise SystemExit(1)
    if state.phase != StreamingPhase.COMPLETE:
        print_warning(f"Analysis ended in phase: {state.phase.value}")
        raise SystemExit(1)

    if as_json:
        console.print_json(state.profile.model_dump_json())
    elif isinstance(state.profile, MatchProfile):
        _show_match_summary(state.profile)
    else:
        _show_self_summary(state.profile)


async def _run_analysis(
    kind: ProfileKind,
    video: Path,
    store: JsonRecordStore,
    analyzer: StreamingProfileAnalyzer,
    config: AppConfig,
) -> StreamingState[Any]:
    if kind == ProfileKind.MATCH:
        hooks: Any = build_match_hooks(MatchAnalysisSession(store), analyzer.analyze_chunks)
    else:
        hooks = build_self_hooks(SelfAnalysisSession(store), analyzer.analyze_chunks)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total} chunks"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(PHASE_LABELS[StreamingPhase.EXTRACTING], total=config.streaming.total_chunks)

        def on_state_change(state: StreamingState[Any]) -> None:
            progress.update(task_id, description=PHASE_LABELS[state.phase], completed=state.current_chunk)

        controller = StreamingAnalysisController(
            hooks,
            FfmpegFrameSource(config.streaming),
            settings=config.streaming,
            on_state_change=on_state_change,
        )
        try:
            return await controller.start(video)
        except asyncio.CancelledError:
            await controller.abort(persist_partial=True)
            raise


def _show_match_summary(profile: MatchProfile) -> None:
    identity = profile.identity
    psych = profile.psychological
    title = f"{identity.name or 'Unknown'}" + (f", {identity.age}" if identity.age else "")
    console.print(Panel(psych.emerging_archetype or "No archetype yet", title=title, expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("App", identity.app or "Unknown")
    table.add_row("Location", identity.location or "-")
    table.add_row("Job", identity.job or "-")
    table.add_row("Confidence", f"{psych.confidence_level}%")
    table.add_row("Vibes", ", ".join(profile.photos.vibes_summary) or "-")
    table.add_row("Green flags", "\n".join(profile.early_warnings.green_flags) or "-")
    table.add_row("Red flags", "\n".join(profile.early_warnings.red_flags) or "-")
    console.print(table)


def _show_self_summary(profile: SelfProfile) -> None:
    psych = profile.psychological
    console.print(Panel(psych.archetype or "No archetype yet", title="Your profile", expand=False))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Confidence", f"{psych.confidence_level}%")
    table.add_row("Strengths", "\n".join(profile.behavioral.strengths) or "-")
    table.add_row("Growth areas", "\n".join(profile.behavioral.growth_areas) or "-")
    table.add_row("Bio suggestions", "\n".join(profile.dating.bio_suggestions) or "-")
    console.print(table)


# =============================================================================
# List Command
# =============================================================================


@cli.command(name="list")
@click.option("--data-dir", type=click.Path(file_okay=False), help="Where records are stored")
@click.pass_context
def list_records(ctx: click.Context, data_dir: str | None) -> None:
    """List stored match analyses."""
    config = _load_config(ctx)
    store = JsonRecordStore(_data_dir(config, data_dir) / "matches")
    records = asyncio.run(store.list_records())

    if not records:
        console.print("No analyses stored yet.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Age", justify="right")
    table.add_column("App")
    table.add_column("Saved")
    for record in records:
        table.add_row(
            str(record.get("id", "")),
            str(record.get("name", "")),
            str(record.get("age") or "-"),
            str(record.get("app_name", "")),
            str(record.get("timestamp", ""))[:19],
        )
    console.print(table)


# =============================================================================
# Config Commands
# =============================================================================


@cli.group()
def config() -> None:
    """Manage configuration and the Gemini API key."""


@config.command("set-key")
@click.option(
    "--backend",
    type=click.Choice([b.value for b in KeyStorageBackend]),
    default=KeyStorageBackend.KEYRING.value,
    show_default=True,
    help="Where to keep the key",
)
@click.option("--key", prompt="Gemini API key", hide_input=True, help="The API key")
@click.pass_context
def set_key(ctx: click.Context, backend: str, key: str) -> None:
    """Store the Gemini API key."""
    config_path = ctx.obj.get("config_path")
    try:
        configure_api_key(
            key.strip(), KeyStorageBackend(backend), Path(config_path) if config_path else None
        )
    except ConfigurationError as e:
        print_error(str(e))
        raise SystemExit(1) from e
    print_success(f"API key stored using the {backend} backend")


@config.command("show")
@click.pass_context
def show(ctx: click.Context) -> None:
    """Show the current configuration."""
    app_config = _load_config(ctx)
    key_configured = _key_manager(app_config).is_key_configured()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Model", app_config.ai.model_name)
    table.add_row("Temperature", str(app_config.ai.temperature))
    table.add_row("Max retries", str(app_config.ai.max_retries))
    table.add_row("Chunk size", str(app_config.streaming.chunk_size))
    table.add_row("Total frames", str(app_config.streaming.total_frames))
    table.add_row("Data directory", str(app_config.storage.resolve_data_dir()))
    table.add_row("Key backend", app_config.key_storage_backend.value)
    table.add_row("API key", "[green]configured[/green]" if key_configured else "[red]missing[/red]")
    console.print(table)


def main() -> None:
    try:
        cli()
    except AIClientError as e:
        print_error(e.message)
        raise SystemExit(1) from e


if __name__ == "__main__":
    main()
