"""Runtime configuration helpers for the chapter pipeline.

Responsibilities:
- Validate pipeline configuration before execution.
- Resolve provider runtime values with precedence rules.
- Assemble a `ChapterPipeline` with concrete provider clients from config.
"""

from __future__ import annotations

from collections.abc import Callable
import os

from ..audio.transitions import TransitionPlan
from ..cache.segment_cache import SegmentCache
from ..config import ChaptervoiceConfig, ProviderRuntimeConfig, RuntimeConfigSources
from ..errors import PipelineStageError
from ..llm.attribution import AttributionClient
from ..llm.rate_limiter import RateLimiter
from ..llm.retry import RetryPolicy
from ..provider_factory import ProviderFactory
from ..speakers.aliases import AliasResolver
from ..telemetry.cost_tracker import CostTracker
from ..telemetry.logger import RunLogger
from ..text.chunking import Chunker
from ..text.pronunciation import PronunciationDictionary
from ..tts.renderer import SegmentRenderer
from ..tts.synthesizer import VoiceSynthesizer
from .orchestrator import ChapterPipeline


_ELEVENLABS_VOICE_SETTINGS = {"stability": 0.5, "similarity_boost": 0.5}


def validate_config(config: ChaptervoiceConfig) -> None:
    """Validate top-level configuration and map failures to stage-aware error."""

    try:
        config.validate()
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=str(exc),
            hint="Update provider/model options and rerun the command.",
        ) from exc


def resolve_runtime_config(config: ChaptervoiceConfig) -> ProviderRuntimeConfig:
    """Resolve runtime provider settings with deterministic source precedence."""

    try:
        env_source = config.runtime_sources.env or os.environ
        runtime_sources = RuntimeConfigSources(
            cli=config.runtime_sources.cli,
            secure=config.runtime_sources.secure,
            env=env_source,
        )
        return config.resolved_provider_runtime(runtime_sources)
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=str(exc),
            hint=(
                "Set supported provider IDs and non-empty model/voice values in "
                "CLI, secure storage, environment, or config defaults."
            ),
        ) from exc


def build_pipeline(
    config: ChaptervoiceConfig,
    run_logger: RunLogger | None = None,
    stage_progress_callback: Callable[[str, int, int], None] | None = None,
) -> ChapterPipeline:
    """Create a pipeline wired to the providers resolved from `config`."""

    validate_config(config)
    runtime = resolve_runtime_config(config)
    rate_limiter = RateLimiter(min_interval_seconds=config.min_request_interval_seconds)
    alias_resolver = AliasResolver.from_mapping(config.aliases)

    chat_client = ProviderFactory.create_chat_client(
        runtime.attribution_provider,
        api_key=runtime.api_key_for(runtime.attribution_provider),
        timeout_seconds=config.request_timeout_seconds,
        rate_limiter=rate_limiter,
    )
    speech_client = ProviderFactory.create_speech_client(
        runtime.tts_provider,
        api_key=runtime.api_key_for(runtime.tts_provider),
        timeout_seconds=config.request_timeout_seconds,
        rate_limiter=rate_limiter,
    )

    attribution_client = AttributionClient(
        chat_client,
        model=runtime.attribution_model,
        alias_resolver=alias_resolver,
        retry_policy=RetryPolicy(
            max_attempts=config.attribution_max_attempts,
            backoff_base_seconds=config.retry_backoff_base_seconds,
            backoff_max_seconds=config.retry_backoff_max_seconds,
        ),
        parallelism=config.attribution_parallelism,
    )
    synthesizer = VoiceSynthesizer(
        speech_client,
        provider_id=runtime.tts_provider,
        model=runtime.tts_model,
        pronunciations=PronunciationDictionary(config.pronunciations),
        retry_policy=RetryPolicy(
            max_attempts=config.synthesis_max_attempts,
            backoff_base_seconds=config.retry_backoff_base_seconds,
            backoff_max_seconds=config.retry_backoff_max_seconds,
        ),
        provider_options=(
            _ELEVENLABS_VOICE_SETTINGS if runtime.tts_provider == "elevenlabs" else None
        ),
    )
    renderer = SegmentRenderer(
        SegmentCache(config.resolved_cache_dir),
        synthesizer,
        workers=config.synthesis_workers,
    )

    return ChapterPipeline(
        work_root=config.work_dir,
        chunker=Chunker(budget_bytes=config.chunk_size_bytes),
        attribution_client=attribution_client,
        renderer=renderer,
        transitions=TransitionPlan(
            intro_pause_seconds=config.intro_pause_seconds,
            end_pause_seconds=config.end_pause_seconds,
            end_announcement_text=config.end_announcement_text,
            outro_pause_seconds=config.outro_pause_seconds,
        ),
        default_voices=config.voices,
        narrator_voice=runtime.narrator_voice,
        announcer_voice=config.announcer_voice,
        cost_tracker=CostTracker(tts_model=runtime.tts_model),
        run_logger=run_logger,
        stage_progress_callback=stage_progress_callback,
    )
