"""CLI provider runtime resolution helpers.

This module isolates API-key prompting, runtime source assembly, and secure
API-key persistence from the command wiring layer.
"""

from __future__ import annotations

from typing import Callable, Protocol

import typer

from .credentials import create_credential_store
from .errors import PipelineStageError
from .parsing import normalize_optional_string


_RUNTIME_KEY_BY_PROVIDER = {
    "openai": "api_key",
    "elevenlabs": "elevenlabs_api_key",
}
_PROVIDER_LABELS = {
    "openai": "OpenAI",
    "elevenlabs": "ElevenLabs",
}


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def get_api_key(self) -> str | None:
        """Return currently stored API key, if available."""

    def set_api_key(self, api_key: str) -> None:
        """Persist API key value in secure storage."""


def _set_runtime_cli_value(
    runtime_cli_values: dict[str, str],
    key: str,
    value: str | None,
) -> None:
    """Set a normalized runtime CLI value when user input is present."""

    normalized = normalize_optional_string(value)
    if normalized is not None:
        runtime_cli_values[key] = normalized


def prompt_hidden_api_key(provider_id: str, *, allow_blank: bool = True) -> str | None:
    """Prompt for a provider API key with hidden input."""

    label = _PROVIDER_LABELS.get(provider_id, provider_id)
    suffix = "hidden; leave blank to skip" if allow_blank else "hidden input"
    return normalize_optional_string(
        typer.prompt(
            f"{label} API key ({suffix})",
            default="",
            hide_input=True,
            show_default=False,
        )
    )


def resolve_provider_runtime_sources(
    provider_tts: str | None,
    model_attribution: str | None,
    model_tts: str | None,
    narrator_voice: str | None,
    api_key: str | None,
    elevenlabs_api_key: str | None,
    prompt_api_key: bool,
    store_api_key: bool,
    credential_store_factory: Callable[[str], CredentialStoreProtocol] = create_credential_store,
) -> tuple[dict[str, str], dict[str, str]]:
    """Resolve CLI and secure runtime source mappings for provider configuration.

    `--prompt-api-key` asks for the key of the selected TTS provider, or the
    OpenAI key when no TTS provider was given on the command line.
    """

    runtime_cli_values: dict[str, str] = {}
    _set_runtime_cli_value(runtime_cli_values, "provider_tts", provider_tts)
    _set_runtime_cli_value(runtime_cli_values, "model_attribution", model_attribution)
    _set_runtime_cli_value(runtime_cli_values, "model_tts", model_tts)
    _set_runtime_cli_value(runtime_cli_values, "narrator_voice", narrator_voice)
    _set_runtime_cli_value(runtime_cli_values, "api_key", api_key)
    _set_runtime_cli_value(runtime_cli_values, "elevenlabs_api_key", elevenlabs_api_key)

    entered_providers = [
        provider_id
        for provider_id, runtime_key in _RUNTIME_KEY_BY_PROVIDER.items()
        if runtime_key in runtime_cli_values
    ]
    prompted_provider = runtime_cli_values.get("provider_tts", "openai")
    prompted_key = _RUNTIME_KEY_BY_PROVIDER.get(prompted_provider, "api_key")
    if prompt_api_key and prompted_key not in runtime_cli_values:
        prompted_api_key = prompt_hidden_api_key(prompted_provider)
        if prompted_api_key is not None:
            runtime_cli_values[prompted_key] = prompted_api_key
            entered_providers.append(prompted_provider)

    runtime_secure_values: dict[str, str] = {}
    stores: dict[str, CredentialStoreProtocol] = {}
    for provider_id, runtime_key in _RUNTIME_KEY_BY_PROVIDER.items():
        stores[provider_id] = credential_store_factory(provider_id)
        stored_api_key = stores[provider_id].get_api_key()
        if stored_api_key is not None:
            runtime_secure_values[runtime_key] = stored_api_key

    if store_api_key:
        for provider_id in entered_providers:
            runtime_key = _RUNTIME_KEY_BY_PROVIDER[provider_id]
            try:
                stores[provider_id].set_api_key(runtime_cli_values[runtime_key])
            except Exception as exc:
                raise PipelineStageError(
                    stage="credentials",
                    detail=f"Failed to store API key securely: {exc}",
                    hint=(
                        "Install and configure a keyring backend, or rerun with "
                        "`--no-store-api-key` for one-off usage."
                    ),
                ) from exc
            label = _PROVIDER_LABELS[provider_id]
            typer.echo(f"Stored {label} API key in secure credential storage.")

    return runtime_cli_values, runtime_secure_values
