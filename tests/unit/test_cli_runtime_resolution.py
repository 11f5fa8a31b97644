"""Unit tests for CLI provider runtime resolution helpers."""

from __future__ import annotations

import pytest

from chaptervoice.cli_runtime import resolve_provider_runtime_sources
from chaptervoice.errors import PipelineStageError


class InMemoryCredentialStore:
    """In-memory credential store implementation for runtime-resolution tests."""

    def __init__(self, initial_api_key: str | None = None) -> None:
        """Initialize the store with an optional initial API key."""

        self._api_key = initial_api_key
        self.stored_values: list[str] = []

    def get_api_key(self) -> str | None:
        """Return currently stored API key value."""

        return self._api_key

    def set_api_key(self, api_key: str) -> None:
        """Persist API key value and keep a history for assertions."""

        self._api_key = api_key
        self.stored_values.append(api_key)


class FailingCredentialStore:
    """Credential store that raises when persisting API key values."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id

    def get_api_key(self) -> str | None:
        """Return no pre-existing secure API key."""

        return None

    def set_api_key(self, api_key: str) -> None:
        """Raise deterministic storage failure used for error-path assertions."""

        raise RuntimeError("no keyring backend")


def _resolve(stores: dict[str, InMemoryCredentialStore], **overrides: object):
    arguments: dict[str, object] = {
        "provider_tts": None,
        "model_attribution": None,
        "model_tts": None,
        "narrator_voice": None,
        "api_key": None,
        "elevenlabs_api_key": None,
        "prompt_api_key": False,
        "store_api_key": True,
        "credential_store_factory": lambda provider_id: stores[provider_id],
    }
    arguments.update(overrides)
    return resolve_provider_runtime_sources(**arguments)  # type: ignore[arg-type]


def test_resolve_provider_runtime_sources_collects_cli_and_secure_values() -> None:
    """Resolver should normalize CLI overrides and include secure API key fallbacks."""

    stores = {
        "openai": InMemoryCredentialStore(initial_api_key="secure-openai"),
        "elevenlabs": InMemoryCredentialStore(initial_api_key="secure-elevenlabs"),
    }

    runtime_cli_values, runtime_secure_values = _resolve(
        stores,
        provider_tts=" elevenlabs ",
        model_attribution=" gpt-4o-mini ",
        narrator_voice="  ",
    )

    assert runtime_cli_values == {
        "provider_tts": "elevenlabs",
        "model_attribution": "gpt-4o-mini",
    }
    assert runtime_secure_values == {
        "api_key": "secure-openai",
        "elevenlabs_api_key": "secure-elevenlabs",
    }
    assert stores["openai"].stored_values == []
    assert stores["elevenlabs"].stored_values == []


def test_resolve_provider_runtime_sources_prompts_for_selected_tts_provider(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    """The prompt asks for the TTS provider's key and stores it under that provider."""

    prompts: list[str] = []

    def _fake_prompt(text: str, **kwargs: object) -> str:
        del kwargs
        prompts.append(text)
        return " prompted-el-key "

    monkeypatch.setattr("chaptervoice.cli_runtime.typer.prompt", _fake_prompt)
    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, _ = _resolve(stores, provider_tts="elevenlabs", prompt_api_key=True)

    assert prompts == ["ElevenLabs API key (hidden; leave blank to skip)"]
    assert runtime_cli_values["elevenlabs_api_key"] == "prompted-el-key"
    assert stores["elevenlabs"].stored_values == ["prompted-el-key"]
    assert stores["openai"].stored_values == []
    assert "Stored ElevenLabs API key in secure credential storage." in capsys.readouterr().out


def test_resolve_provider_runtime_sources_prompt_api_key_blank_skips_storage(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Blank prompted API key should not be added to CLI runtime values nor stored."""

    monkeypatch.setattr("chaptervoice.cli_runtime.typer.prompt", lambda *args, **kwargs: "   ")
    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, runtime_secure_values = _resolve(stores, prompt_api_key=True)

    assert "api_key" not in runtime_cli_values
    assert runtime_secure_values == {}
    assert stores["openai"].stored_values == []


def test_resolve_provider_runtime_sources_skips_prompt_when_key_given(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _unexpected_prompt(*args: object, **kwargs: object) -> str:
        raise AssertionError("prompt must not be shown")

    monkeypatch.setattr("chaptervoice.cli_runtime.typer.prompt", _unexpected_prompt)
    stores = {"openai": InMemoryCredentialStore(), "elevenlabs": InMemoryCredentialStore()}

    runtime_cli_values, _ = _resolve(
        stores, api_key="sk-explicit", prompt_api_key=True, store_api_key=False
    )

    assert runtime_cli_values == {"api_key": "sk-explicit"}
    assert stores["openai"].stored_values == []


def test_resolve_provider_runtime_sources_storage_failure_raises_stage_error() -> None:
    """Credential-store persistence errors should map to credentials stage diagnostics."""

    with pytest.raises(PipelineStageError) as exc_info:
        resolve_provider_runtime_sources(
            provider_tts=None,
            model_attribution=None,
            model_tts=None,
            narrator_voice=None,
            api_key="explicit-api-key",
            elevenlabs_api_key=None,
            prompt_api_key=False,
            store_api_key=True,
            credential_store_factory=FailingCredentialStore,
        )

    assert exc_info.value.stage == "credentials"
    assert "Failed to store API key securely:" in exc_info.value.detail
    assert "--no-store-api-key" in (exc_info.value.hint or "")
