"""Unit tests for provider client construction and pipeline assembly."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaptervoice.config import ChaptervoiceConfig, RuntimeConfigSources
from chaptervoice.errors import PipelineStageError
from chaptervoice.llm.openai_client import OpenAIChatClient, OpenAISpeechClient
from chaptervoice.pipeline import ChapterPipeline, build_pipeline
from chaptervoice.provider_factory import ProviderFactory
from chaptervoice.tts.elevenlabs_client import ElevenLabsSpeechClient


def test_provider_factory_builds_clients_without_http_retries() -> None:
    """Stage retry policies own retries, so HTTP clients must not retry on their own."""

    chat_client = ProviderFactory.create_chat_client("openai", api_key="sk-test")
    speech_client = ProviderFactory.create_speech_client("elevenlabs", api_key="el-key")

    assert isinstance(chat_client, OpenAIChatClient)
    assert isinstance(speech_client, ElevenLabsSpeechClient)
    assert chat_client.max_retries == 0
    assert speech_client.max_retries == 0
    assert speech_client.api_key == "el-key"


def test_provider_factory_rejects_unknown_providers() -> None:
    with pytest.raises(ValueError, match="Unsupported attribution provider"):
        ProviderFactory.create_chat_client("anthropic")
    with pytest.raises(ValueError, match="Unsupported TTS provider"):
        ProviderFactory.create_speech_client("azure")


def test_build_pipeline_wires_config_into_stages(tmp_path: Path) -> None:
    config = ChaptervoiceConfig(
        work_dir=tmp_path / "chapters",
        chunk_size_bytes=2048,
        synthesis_workers=3,
        narrator_voice="fable",
        voices={"Jake": "echo"},
        aliases={"Vilastromoz": ["Villy"]},
        pronunciations={"Primas": "Pree-mahs"},
        end_announcement_text="Fin",
        runtime_sources=RuntimeConfigSources(
            cli={"model_attribution": "gpt-4o-mini"},
            env={"OPENAI_API_KEY": "sk-env"},
        ),
    )

    pipeline = build_pipeline(config)

    assert isinstance(pipeline, ChapterPipeline)
    assert pipeline.work_root == tmp_path / "chapters"
    assert pipeline.chunker.budget_bytes == 2048
    assert pipeline.renderer.workers == 3
    assert pipeline.renderer.cache.root == tmp_path / "chapters" / "cache"
    assert pipeline.attribution_client.model == "gpt-4o-mini"
    assert pipeline.attribution_client.alias_resolver.resolve("Villy") == "vilastromoz"
    synthesizer = pipeline.renderer.synthesizer
    assert isinstance(synthesizer.speech_client, OpenAISpeechClient)
    assert synthesizer.speech_client.api_key == "sk-env"
    assert synthesizer.model == "tts-1"
    assert synthesizer.pronunciations.fingerprint() == "Primas=Pree-mahs"
    assert pipeline.transitions.end_announcement_text == "Fin"


def test_build_pipeline_uses_elevenlabs_voice_settings(tmp_path: Path) -> None:
    config = ChaptervoiceConfig(
        work_dir=tmp_path,
        provider_tts="elevenlabs",
        runtime_sources=RuntimeConfigSources(
            env={"OPENAI_API_KEY": "sk-env", "ELEVENLABS_API_KEY": "el-env"}
        ),
    )

    synthesizer = build_pipeline(config).renderer.synthesizer

    assert isinstance(synthesizer.speech_client, ElevenLabsSpeechClient)
    assert synthesizer.speech_client.api_key == "el-env"
    assert synthesizer.model == "eleven_monolingual_v1"
    assert synthesizer.provider_options == {"stability": 0.5, "similarity_boost": 0.5}


def test_build_pipeline_maps_invalid_config_to_config_stage(tmp_path: Path) -> None:
    with pytest.raises(PipelineStageError) as exc_info:
        build_pipeline(ChaptervoiceConfig(work_dir=tmp_path, synthesis_workers=0))

    assert exc_info.value.stage == "config"
    assert "synthesis_workers" in exc_info.value.detail
