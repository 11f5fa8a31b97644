"""Unit tests for YAML/environment configuration loader behavior."""

from __future__ import annotations

from pathlib import Path

import pytest

from chaptervoice.config import ChaptervoiceConfig, ConfigLoader, RuntimeConfigSources


def test_config_loader_from_yaml_loads_valid_config_and_normalizes_values(
    tmp_path: Path,
) -> None:
    """YAML loader should parse valid payloads and normalize typed/blank values."""

    config_path = tmp_path / "chaptervoice.yml"
    config_path.write_text(
        """
work_dir: " chapters "
provider_tts: " openai "
model_attribution: " gpt-4o-mini "
narrator_voice: " fable "
chunk_size_bytes: " 4096 "
synthesis_workers: 2
retry_backoff_base_seconds: 0.5
voices:
  " Jake ": " echo "
  Vilastromoz: onyx
aliases:
  Vilastromoz:
    aliases: [Villy, the Malefic Viper]
    description: Primordial god.
pronunciations:
  Primas: Pree-mahs
transitions:
  intro_pause_seconds: 0.5
  end_announcement_text: " Fin "
""".strip(),
        encoding="utf-8",
    )

    config = ConfigLoader.from_yaml(config_path)

    assert config.work_dir == Path("chapters")
    assert config.resolved_cache_dir == Path("chapters") / "cache"
    assert config.provider_tts == "openai"
    assert config.model_attribution == "gpt-4o-mini"
    assert config.model_tts is None
    assert config.narrator_voice == "fable"
    assert config.chunk_size_bytes == 4096
    assert config.synthesis_workers == 2
    assert config.retry_backoff_base_seconds == 0.5
    assert config.voices == {"Jake": "echo", "Vilastromoz": "onyx"}
    assert config.aliases["Vilastromoz"]["aliases"] == ["Villy", "the Malefic Viper"]
    assert config.pronunciations == {"Primas": "Pree-mahs"}
    assert config.intro_pause_seconds == 0.5
    assert config.end_pause_seconds == 2.0
    assert config.end_announcement_text == "Fin"


def test_config_loader_from_yaml_rejects_unknown_keys(tmp_path: Path) -> None:
    unknown_path = tmp_path / "unknown.yml"
    unknown_path.write_text("work_dir: out\nunknown_field: x\n", encoding="utf-8")

    with pytest.raises(ValueError, match=r"unsupported key\(s\): unknown_field"):
        ConfigLoader.from_yaml(unknown_path)

    transitions_path = tmp_path / "transitions.yml"
    transitions_path.write_text("transitions:\n  crossfade: 1\n", encoding="utf-8")

    with pytest.raises(ValueError, match="crossfade"):
        ConfigLoader.from_yaml(transitions_path)


@pytest.mark.parametrize(
    ("yaml_text", "message"),
    [
        ("chunk_size_bytes: 0\n", "positive integer"),
        ("synthesis_workers: many\n", "positive integer"),
        ("end_pause_seconds: -1\n", "non-negative number"),
        ("voices: [echo]\n", "must be a mapping"),
        ("voices:\n  jake: ''\n", "blank value"),
        ("provider_tts: azure\n", "Unsupported `provider_tts`"),
        ("- just\n- a list\n", "top-level mapping"),
        ("aliases:\n  Jake: [Hunter]\n  Miranda: [Hunter]\n", "maps to both"),
    ],
)
def test_config_loader_from_yaml_rejects_invalid_values(
    tmp_path: Path, yaml_text: str, message: str
) -> None:
    config_path = tmp_path / "invalid.yml"
    config_path.write_text(yaml_text, encoding="utf-8")

    with pytest.raises(ValueError, match=message):
        ConfigLoader.from_yaml(config_path)


def test_config_loader_from_yaml_rejects_unparseable_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "broken.yml"
    config_path.write_text("voices: {jake: echo\n", encoding="utf-8")

    with pytest.raises(ValueError, match="could not be parsed"):
        ConfigLoader.from_yaml(config_path)


def test_config_loader_from_env_reads_prefixed_values() -> None:
    config = ConfigLoader.from_env(
        {
            "CHAPTERVOICE_WORK_DIR": "/tmp/chapters",
            "CHAPTERVOICE_PROVIDER_TTS": "elevenlabs",
            "CHAPTERVOICE_CHUNK_SIZE_BYTES": "2048",
            "CHAPTERVOICE_END_PAUSE_SECONDS": "1.5",
            "OPENAI_API_KEY": " sk-env ",
            "UNRELATED": "ignored",
        }
    )

    assert config.work_dir == Path("/tmp/chapters")
    assert config.provider_tts == "elevenlabs"
    assert config.chunk_size_bytes == 2048
    assert config.end_pause_seconds == 1.5
    assert config.api_key == "sk-env"
    assert "UNRELATED" not in config.runtime_sources.env
    assert config.runtime_sources.env["OPENAI_API_KEY"] == " sk-env "


def test_config_loader_from_env_rejects_invalid_integers() -> None:
    with pytest.raises(ValueError, match="CHAPTERVOICE_SYNTHESIS_WORKERS"):
        ConfigLoader.from_env({"CHAPTERVOICE_SYNTHESIS_WORKERS": "-2"})


def test_runtime_resolution_prefers_cli_then_secure_then_env_then_default() -> None:
    """Each runtime key is taken from the highest-precedence source that has it."""

    config = ChaptervoiceConfig(api_key="sk-config")
    sources = RuntimeConfigSources(
        cli={"model_attribution": "gpt-cli"},
        secure={"api_key": "sk-secure", "model_attribution": "gpt-secure"},
        env={
            "OPENAI_API_KEY": "sk-env",
            "CHAPTERVOICE_NARRATOR_VOICE": "shimmer",
            "CHAPTERVOICE_MODEL_ATTRIBUTION": "gpt-env",
        },
    )

    runtime = config.resolved_provider_runtime(sources)

    assert runtime.attribution_model == "gpt-cli"
    assert runtime.api_key == "sk-secure"
    assert runtime.narrator_voice == "shimmer"
    assert runtime.tts_provider == "openai"
    assert runtime.tts_model == "tts-1"
    assert "api_key" not in runtime.as_artifact_metadata()


def test_runtime_resolution_selects_provider_default_tts_model() -> None:
    config = ChaptervoiceConfig(elevenlabs_api_key="el-config")

    runtime = config.resolved_provider_runtime(
        RuntimeConfigSources(cli={"provider_tts": "elevenlabs"})
    )

    assert runtime.tts_model == "eleven_monolingual_v1"
    assert runtime.api_key_for("elevenlabs") == "el-config"
    assert runtime.api_key_for("openai") is None


def test_runtime_resolution_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError, match="Unsupported `provider_tts`"):
        ChaptervoiceConfig().resolved_provider_runtime(
            RuntimeConfigSources(cli={"provider_tts": "azure"})
        )
