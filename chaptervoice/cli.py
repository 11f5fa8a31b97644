"""Command-line interface for Chaptervoice.

Responsibilities:
- Expose user-facing commands for chapter synthesis, inspection, and repair.
- Convert CLI arguments into `ChaptervoiceConfig` and run the pipeline.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from dataclasses import replace
import os
from pathlib import Path
from typing import Annotated

import typer

from .cli_rendering import (
    echo_cost_summary,
    echo_run_result,
    echo_segment_rows,
    echo_status,
    exit_with_command_error,
)
from .cli_runtime import prompt_hidden_api_key, resolve_provider_runtime_sources
from .config import ChaptervoiceConfig, ConfigLoader, RuntimeConfigSources
from .credentials import create_credential_store
from .errors import PipelineStageError
from .models.datatypes import Chapter
from .pipeline import build_pipeline
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="chaptervoice",
    no_args_is_help=True,
    help="Chaptervoice CLI.",
)

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file with command defaults."),
]
WorkDirOption = Annotated[
    Path | None,
    typer.Option("--work-dir", help="Chapter work directory (overrides config file value)."),
]
ChapterIdArgument = Annotated[str, typer.Argument(help="Chapter identifier.")]
ChapterTextArgument = Annotated[Path, typer.Argument(help="Path to chapter plain text.")]


class BuildProgressIndicator:
    """Render deterministic per-stage progress lines for long-running commands."""

    _SPINNER_FRAMES = "|/-\\"

    def __init__(self, command_name: str) -> None:
        """Initialize progress indicator metadata for a command invocation."""

        self._command_name = command_name

    def on_stage_start(self, stage_name: str, stage_index: int, stage_total: int) -> None:
        """Print one progress line for a stage start transition."""

        spinner = self._SPINNER_FRAMES[(stage_index - 1) % len(self._SPINNER_FRAMES)]
        typer.echo(
            f"[progress] command={self._command_name} "
            f"{spinner} {stage_index}/{stage_total} stage={stage_name}"
        )


def _load_yaml_config(config_path: Path | None) -> ChaptervoiceConfig | None:
    """Load a YAML config file when requested and map failures to stage errors."""

    if config_path is None:
        return None

    try:
        return ConfigLoader.from_yaml(config_path)
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Config file not found: `{config_path}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Invalid config file `{config_path}`: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    except Exception as exc:
        raise PipelineStageError(
            stage="config",
            detail=f"Failed to load config file `{config_path}`: {exc}",
            hint="Verify YAML syntax and file permissions.",
        ) from exc


def _resolve_command_config(
    config_file: Path | None,
    work_dir: Path | None,
    runtime_cli_values: dict[str, str] | None = None,
    runtime_secure_values: dict[str, str] | None = None,
) -> ChaptervoiceConfig:
    """Resolve effective command config from YAML defaults and explicit CLI overrides."""

    loaded_config = _load_yaml_config(config_file)
    base_config = loaded_config if loaded_config is not None else ChaptervoiceConfig()
    resolved_work_dir = work_dir if work_dir is not None else base_config.work_dir
    return replace(
        base_config,
        work_dir=resolved_work_dir,
        runtime_sources=RuntimeConfigSources(
            cli=dict(runtime_cli_values or {}),
            secure=dict(runtime_secure_values or {}),
            env=os.environ,
        ),
    )


def _read_chapter(chapter_path: Path, chapter_id: str | None) -> Chapter:
    """Load chapter text from disk and derive its identifier from the file stem."""

    try:
        text = chapter_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise PipelineStageError(
            stage="input",
            detail=f"Chapter text file not found: `{chapter_path}`.",
            hint="Pass an existing UTF-8 plain text file.",
        ) from exc
    except UnicodeDecodeError as exc:
        raise PipelineStageError(
            stage="input",
            detail=f"Chapter text file `{chapter_path}` is not valid UTF-8.",
            hint="Convert the chapter to UTF-8 plain text and rerun.",
        ) from exc
    resolved_id = chapter_id or chapter_path.stem
    return Chapter(chapter_id=resolved_id, text=text, title=chapter_path.stem)


@app.command("synthesize")
def synthesize_command(
    chapter_text: ChapterTextArgument,
    chapter_id: Annotated[
        str | None,
        typer.Option("--chapter-id", help="Chapter identifier; defaults to the file stem."),
    ] = None,
    config_file: ConfigOption = None,
    work_dir: WorkDirOption = None,
    provider_tts: Annotated[
        str | None, typer.Option("--provider-tts", help="TTS provider id.")
    ] = None,
    model_attribution: Annotated[
        str | None,
        typer.Option("--model-attribution", help="Attribution chat model id override."),
    ] = None,
    model_tts: Annotated[
        str | None,
        typer.Option("--model-tts", help="TTS model id override."),
    ] = None,
    narrator_voice: Annotated[
        str | None,
        typer.Option("--narrator-voice", help="Narrator voice id override."),
    ] = None,
    api_key: Annotated[
        str | None,
        typer.Option(
            "--api-key",
            help="OpenAI API key override. Prefer `--prompt-api-key` to avoid shell history.",
        ),
    ] = None,
    elevenlabs_api_key: Annotated[
        str | None,
        typer.Option("--elevenlabs-api-key", help="ElevenLabs API key override."),
    ] = None,
    prompt_api_key: Annotated[
        bool,
        typer.Option(
            "--prompt-api-key",
            help="Prompt for the TTS provider API key with hidden input (never echoed).",
        ),
    ] = False,
    store_api_key: Annotated[
        bool,
        typer.Option(
            "--store-api-key/--no-store-api-key",
            help="Persist CLI-entered API key to secure credential storage.",
        ),
    ] = True,
) -> None:
    """Attribute, synthesize, and merge one chapter, resuming prior work."""

    try:
        runtime_cli_values, runtime_secure_values = resolve_provider_runtime_sources(
            provider_tts=provider_tts,
            model_attribution=model_attribution,
            model_tts=model_tts,
            narrator_voice=narrator_voice,
            api_key=api_key,
            elevenlabs_api_key=elevenlabs_api_key,
            prompt_api_key=prompt_api_key,
            store_api_key=store_api_key,
            credential_store_factory=create_credential_store,
        )
        config = _resolve_command_config(
            config_file=config_file,
            work_dir=work_dir,
            runtime_cli_values=runtime_cli_values,
            runtime_secure_values=runtime_secure_values,
        )
        chapter = _read_chapter(chapter_text, chapter_id)
        progress = BuildProgressIndicator(command_name="synthesize")
        pipeline = build_pipeline(
            config,
            run_logger=RunLogger(),
            stage_progress_callback=progress.on_stage_start,
        )
        result = pipeline.run(chapter)
    except Exception as exc:
        exit_with_command_error("synthesize", exc)

    echo_run_result(result)
    echo_cost_summary(pipeline.cost_tracker)


@app.command("status")
def status_command(
    chapter_id: ChapterIdArgument,
    config_file: ConfigOption = None,
    work_dir: WorkDirOption = None,
) -> None:
    """Show recorded pipeline stage and progress for a chapter."""

    try:
        config = _resolve_command_config(config_file=config_file, work_dir=work_dir)
        pipeline = build_pipeline(config)
        state = pipeline.load_state(chapter_id)
        snapshot = pipeline.progress(chapter_id)
    except Exception as exc:
        exit_with_command_error("status", exc)

    echo_status(state, snapshot)


@app.command("segments")
def segments_command(
    chapter_id: ChapterIdArgument,
    config_file: ConfigOption = None,
    work_dir: WorkDirOption = None,
) -> None:
    """List attributed segments with speaker, voice, and cache presence."""

    try:
        config = _resolve_command_config(config_file=config_file, work_dir=work_dir)
        pipeline = build_pipeline(config)
        statuses = pipeline.segment_status(chapter_id)
    except Exception as exc:
        exit_with_command_error("segments", exc)

    echo_segment_rows(statuses)
    cached = sum(1 for status in statuses if status.cached)
    typer.echo(f"Cached: {cached}/{len(statuses)}")


@app.command("regenerate")
def regenerate_command(
    chapter_text: ChapterTextArgument,
    segment: Annotated[
        int,
        typer.Option("--segment", help="Global segment index to regenerate."),
    ],
    chapter_id: Annotated[
        str | None,
        typer.Option("--chapter-id", help="Chapter identifier; defaults to the file stem."),
    ] = None,
    merge: Annotated[
        bool,
        typer.Option(
            "--merge/--no-merge",
            help="Rebuild merged chapter audio after regeneration.",
        ),
    ] = True,
    config_file: ConfigOption = None,
    work_dir: WorkDirOption = None,
) -> None:
    """Resynthesize one segment, bypassing its cached audio."""

    try:
        _, runtime_secure_values = resolve_provider_runtime_sources(
            provider_tts=None,
            model_attribution=None,
            model_tts=None,
            narrator_voice=None,
            api_key=None,
            elevenlabs_api_key=None,
            prompt_api_key=False,
            store_api_key=False,
            credential_store_factory=create_credential_store,
        )
        config = _resolve_command_config(
            config_file=config_file,
            work_dir=work_dir,
            runtime_secure_values=runtime_secure_values,
        )
        chapter = _read_chapter(chapter_text, chapter_id)
        pipeline = build_pipeline(config, run_logger=RunLogger())
        regenerated = pipeline.regenerate_segment(chapter, segment, remerge=merge)
    except Exception as exc:
        exit_with_command_error("regenerate", exc)

    typer.echo(
        f"Regenerated segment {regenerated.segment.global_index} "
        f"speaker={regenerated.segment.speaker_id}"
    )
    typer.echo(f"Audio: {regenerated.entry.audio_path}")
    if regenerated.merged is not None:
        typer.echo(f"Merged audio: {regenerated.merged.path}")


@app.command("merge")
def merge_command(
    chapter_text: ChapterTextArgument,
    chapter_id: Annotated[
        str | None,
        typer.Option("--chapter-id", help="Chapter identifier; defaults to the file stem."),
    ] = None,
    config_file: ConfigOption = None,
    work_dir: WorkDirOption = None,
) -> None:
    """Rebuild merged chapter audio from cached segments only."""

    try:
        config = _resolve_command_config(config_file=config_file, work_dir=work_dir)
        chapter = _read_chapter(chapter_text, chapter_id)
        pipeline = build_pipeline(config, run_logger=RunLogger())
        merged = pipeline.merge_from_cache(chapter)
    except Exception as exc:
        exit_with_command_error("merge", exc)

    typer.echo(f"Merged audio: {merged.path}")
    typer.echo(f"Duration (s): {merged.duration_seconds:.2f}")
    typer.echo(f"Segments: {merged.segment_count}")


@app.command("credentials")
def credentials_command(
    set_api_key: Annotated[
        bool,
        typer.Option(
            "--set-api-key",
            help="Prompt for API key with hidden input and store it securely.",
        ),
    ] = False,
    clear_api_key: Annotated[
        bool,
        typer.Option(
            "--clear-api-key",
            help="Clear stored API key from secure credential storage.",
        ),
    ] = False,
    provider: Annotated[
        str,
        typer.Option("--provider", help="Credential provider: `openai` or `elevenlabs`."),
    ] = "openai",
) -> None:
    """Manage securely stored provider credentials."""

    if set_api_key and clear_api_key:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail="`--set-api-key` and `--clear-api-key` cannot be used together.",
                hint="Run one credentials action per command invocation.",
            ),
        )

    try:
        credential_store = create_credential_store(provider)
    except ValueError as exc:
        exit_with_command_error(
            "credentials",
            PipelineStageError(
                stage="credentials",
                detail=str(exc),
                hint="Use `--provider openai` or `--provider elevenlabs`.",
            ),
        )

    if set_api_key:
        prompted_api_key = prompt_hidden_api_key(provider, allow_blank=False)
        if prompted_api_key is None:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail="No API key entered.",
                    hint="Provide a non-empty API key when using `--set-api-key`.",
                ),
            )
        try:
            credential_store.set_api_key(prompted_api_key)
        except Exception as exc:
            exit_with_command_error(
                "credentials",
                PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint="Install and configure a keyring backend and retry.",
                ),
            )
        typer.echo("API key stored in secure credential storage.")
        return

    if clear_api_key:
        removed = credential_store.clear_api_key()
        if removed:
            typer.echo("Stored API key cleared from secure credential storage.")
        else:
            typer.echo("No stored API key found in secure credential storage.")
        return

    availability = "available" if credential_store.is_available() else "unavailable"
    has_stored_key = credential_store.get_api_key() is not None
    status = "present" if has_stored_key else "not set"
    typer.echo(f"Secure credential storage: {availability}")
    typer.echo(f"Stored {provider} API key: {status}")


def main() -> None:
    """CLI entrypoint for console scripts."""

    app()
