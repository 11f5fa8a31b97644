"""Configuration model and loaders for Chaptervoice.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Provide deterministic precedence resolution for runtime provider/model settings.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `ChaptervoiceConfig`: normalized runtime settings for chapter runs.
- `ProviderRuntimeConfig`: resolved provider/model runtime values.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `ChaptervoiceConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .parsing import normalize_optional_string
from .speakers.aliases import AliasResolver


_DEFAULT_ATTRIBUTION_MODEL = "gpt-4o"
_DEFAULT_TTS_MODELS = {
    "openai": "tts-1",
    "elevenlabs": "eleven_monolingual_v1",
}
_DEFAULT_NARRATOR_VOICE = "nova"
_DEFAULT_ANNOUNCER_VOICE = "alloy"
_SUPPORTED_ATTRIBUTION_PROVIDER_IDS = frozenset({"openai"})
_SUPPORTED_TTS_PROVIDER_IDS = frozenset(_DEFAULT_TTS_MODELS)
_API_KEY_ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
    "elevenlabs": "ELEVENLABS_API_KEY",
}


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderRuntimeConfig:
    """Resolved runtime provider and model identifiers for one run.

    Attributes:
        attribution_provider: Provider identifier for speaker attribution.
        tts_provider: Provider identifier for speech synthesis.
        attribution_model: Chat model used for attribution.
        tts_model: Speech model used for synthesis.
        narrator_voice: Voice for narration and unassigned speakers.
        api_key: OpenAI API key (resolved but never persisted in artifacts).
        elevenlabs_api_key: ElevenLabs API key, when that provider is used.
    """

    attribution_provider: str
    tts_provider: str
    attribution_model: str
    tts_model: str
    narrator_voice: str
    api_key: str | None = None
    elevenlabs_api_key: str | None = None

    def as_artifact_metadata(self) -> dict[str, str]:
        """Return non-secret runtime metadata safe to persist in artifacts."""

        return {
            "provider_attribution": self.attribution_provider,
            "provider_tts": self.tts_provider,
            "model_attribution": self.attribution_model,
            "model_tts": self.tts_model,
            "narrator_voice": self.narrator_voice,
        }

    def api_key_for(self, provider_id: str) -> str | None:
        """Return the API key for a provider identifier."""

        if provider_id == "elevenlabs":
            return self.elevenlabs_api_key
        return self.api_key


@dataclass(slots=True)
class ChaptervoiceConfig:
    """Runtime configuration for chapter runs.

    Attributes:
        work_dir: Root directory for per-chapter work directories.
        cache_dir: Segment cache root; defaults to `<work_dir>/cache`.
        language: Source language code.
        provider_attribution: Attribution provider identifier.
        provider_tts: TTS provider identifier.
        model_attribution: Attribution chat model.
        model_tts: TTS model; `None` selects the provider default.
        narrator_voice: Narrator voice identifier.
        announcer_voice: Voice for in-world system announcements.
        voices: Speaker name to voice identifier defaults.
        aliases: Character alias table (`canonical -> {aliases, description}`).
        pronunciations: Word to spoken-form substitutions for synthesis.
        chunk_size_bytes: Attribution chunk budget in UTF-8 bytes.
        attribution_parallelism: Concurrent attribution requests per chapter.
        synthesis_workers: Concurrent synthesis workers per chapter.
        attribution_max_attempts: Attempts per chunk before failing.
        synthesis_max_attempts: Attempts per synthesis call before failing.
        retry_backoff_base_seconds: Base delay for exponential backoff.
        retry_backoff_max_seconds: Backoff delay ceiling.
        request_timeout_seconds: HTTP timeout for provider requests.
        min_request_interval_seconds: Minimum spacing between provider requests.
        intro_pause_seconds: Silence before the first segment.
        end_pause_seconds: Silence after the last segment.
        outro_pause_seconds: Silence after the closing announcement.
        end_announcement_text: Closing announcement; empty disables it.
        api_key: Optional OpenAI API key.
        elevenlabs_api_key: Optional ElevenLabs API key.
        runtime_sources: Optional runtime source overrides injected by CLI.
    """

    work_dir: Path = Path("chapters")
    cache_dir: Path | None = None
    language: str = "en"
    provider_attribution: str = "openai"
    provider_tts: str = "openai"
    model_attribution: str = _DEFAULT_ATTRIBUTION_MODEL
    model_tts: str | None = None
    narrator_voice: str = _DEFAULT_NARRATOR_VOICE
    announcer_voice: str = _DEFAULT_ANNOUNCER_VOICE
    voices: dict[str, str] = field(default_factory=dict)
    aliases: dict[str, Any] = field(default_factory=dict)
    pronunciations: dict[str, str] = field(default_factory=dict)
    chunk_size_bytes: int = 8192
    attribution_parallelism: int = 4
    synthesis_workers: int = 4
    attribution_max_attempts: int = 3
    synthesis_max_attempts: int = 5
    retry_backoff_base_seconds: float = 1.0
    retry_backoff_max_seconds: float = 30.0
    request_timeout_seconds: float = 60.0
    min_request_interval_seconds: float = 0.05
    intro_pause_seconds: float = 1.0
    end_pause_seconds: float = 2.0
    outro_pause_seconds: float = 2.0
    end_announcement_text: str = "End of Chapter"
    api_key: str | None = None
    elevenlabs_api_key: str | None = None
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)

    @property
    def resolved_cache_dir(self) -> Path:
        """Return the effective segment cache root."""

        return self.cache_dir if self.cache_dir is not None else self.work_dir / "cache"

    def validate(self) -> None:
        """Validate runtime configuration values before pipeline execution."""

        self._validate_provider_id(
            self.provider_attribution,
            "provider_attribution",
            _SUPPORTED_ATTRIBUTION_PROVIDER_IDS,
        )
        self._validate_provider_id(self.provider_tts, "provider_tts", _SUPPORTED_TTS_PROVIDER_IDS)
        self._require_non_empty(self.model_attribution, "model_attribution")
        if self.model_tts is not None:
            self._require_non_empty(self.model_tts, "model_tts")
        self._require_non_empty(self.narrator_voice, "narrator_voice")
        self._require_non_empty(self.announcer_voice, "announcer_voice")
        for field_name in (
            "chunk_size_bytes",
            "attribution_parallelism",
            "synthesis_workers",
            "attribution_max_attempts",
            "synthesis_max_attempts",
        ):
            if int(getattr(self, field_name)) <= 0:
                raise ValueError(f"`{field_name}` must be a positive integer.")
        for field_name in (
            "retry_backoff_base_seconds",
            "retry_backoff_max_seconds",
            "min_request_interval_seconds",
            "intro_pause_seconds",
            "end_pause_seconds",
            "outro_pause_seconds",
        ):
            if float(getattr(self, field_name)) < 0:
                raise ValueError(f"`{field_name}` must not be negative.")
        if self.request_timeout_seconds <= 0:
            raise ValueError("`request_timeout_seconds` must be positive.")
        AliasResolver.from_mapping(self.aliases)

    def resolved_provider_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> ProviderRuntimeConfig:
        """Resolve provider and model settings with deterministic source precedence.

        Precedence for each key is:
        `cli` > `secure` > `env` > config field default.
        """

        resolved_sources = sources if sources is not None else RuntimeConfigSources()

        attribution_provider = self._resolve_runtime_value(
            key="provider_attribution",
            env_key="CHAPTERVOICE_PROVIDER_ATTRIBUTION",
            default_value=self.provider_attribution,
            sources=resolved_sources,
        )
        tts_provider = self._resolve_runtime_value(
            key="provider_tts",
            env_key="CHAPTERVOICE_PROVIDER_TTS",
            default_value=self.provider_tts,
            sources=resolved_sources,
        )
        self._validate_provider_id(
            attribution_provider,
            "provider_attribution",
            _SUPPORTED_ATTRIBUTION_PROVIDER_IDS,
        )
        self._validate_provider_id(tts_provider, "provider_tts", _SUPPORTED_TTS_PROVIDER_IDS)

        attribution_model = self._resolve_runtime_value(
            key="model_attribution",
            env_key="CHAPTERVOICE_MODEL_ATTRIBUTION",
            default_value=self.model_attribution,
            sources=resolved_sources,
        )
        tts_model = self._resolve_runtime_value(
            key="model_tts",
            env_key="CHAPTERVOICE_MODEL_TTS",
            default_value=self.model_tts or _DEFAULT_TTS_MODELS[tts_provider],
            sources=resolved_sources,
        )
        narrator_voice = self._resolve_runtime_value(
            key="narrator_voice",
            env_key="CHAPTERVOICE_NARRATOR_VOICE",
            default_value=self.narrator_voice,
            sources=resolved_sources,
        )
        api_key = self._resolve_optional_runtime_value(
            key="api_key",
            env_key=_API_KEY_ENV_KEYS["openai"],
            default_value=self.api_key,
            sources=resolved_sources,
        )
        elevenlabs_api_key = self._resolve_optional_runtime_value(
            key="elevenlabs_api_key",
            env_key=_API_KEY_ENV_KEYS["elevenlabs"],
            default_value=self.elevenlabs_api_key,
            sources=resolved_sources,
        )

        return ProviderRuntimeConfig(
            attribution_provider=attribution_provider,
            tts_provider=tts_provider,
            attribution_model=attribution_model,
            tts_model=tts_model,
            narrator_voice=narrator_voice,
            api_key=api_key,
            elevenlabs_api_key=elevenlabs_api_key,
        )

    def _resolve_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str:
        """Resolve a runtime value from sources in deterministic precedence order."""

        resolved = self._resolve_optional_runtime_value(key, env_key, default_value, sources)
        if resolved is None:
            raise ValueError(
                f"`{key}` could not be resolved from CLI, secure storage, env, or defaults."
            )
        return resolved

    def _resolve_optional_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        """Resolve an optional runtime value from sources in deterministic order."""

        cli_value = self._normalized_lookup(sources.cli, key)
        if cli_value is not None:
            return cli_value

        secure_value = self._normalized_lookup(sources.secure, key)
        if secure_value is not None:
            return secure_value

        env_value = self._normalized_lookup(sources.env, env_key)
        if env_value is not None:
            return env_value

        return normalize_optional_string(default_value)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _validate_provider_id(
        provider_id: str, field_name: str, supported_ids: frozenset[str]
    ) -> None:
        """Validate provider identifiers against supported providers."""

        if provider_id not in supported_ids:
            supported = ", ".join(sorted(supported_ids))
            raise ValueError(
                f"Unsupported `{field_name}` value `{provider_id}`; supported: {supported}."
            )

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that runtime string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigLoader:
    """Factory methods for creating `ChaptervoiceConfig` from external sources."""

    _PATH_KEYS = ("work_dir", "cache_dir")
    _STRING_KEYS = (
        "language",
        "provider_attribution",
        "provider_tts",
        "model_attribution",
        "model_tts",
        "narrator_voice",
        "announcer_voice",
        "api_key",
        "elevenlabs_api_key",
    )
    _INT_KEYS = (
        "chunk_size_bytes",
        "attribution_parallelism",
        "synthesis_workers",
        "attribution_max_attempts",
        "synthesis_max_attempts",
    )
    _FLOAT_KEYS = (
        "retry_backoff_base_seconds",
        "retry_backoff_max_seconds",
        "request_timeout_seconds",
        "min_request_interval_seconds",
        "intro_pause_seconds",
        "end_pause_seconds",
        "outro_pause_seconds",
    )
    _SUPPORTED_YAML_KEYS = frozenset(
        {
            *_PATH_KEYS,
            *_STRING_KEYS,
            *_INT_KEYS,
            *_FLOAT_KEYS,
            "voices",
            "aliases",
            "pronunciations",
            "end_announcement_text",
            "transitions",
        }
    )
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "CHAPTERVOICE_PROVIDER_ATTRIBUTION",
            "CHAPTERVOICE_PROVIDER_TTS",
            "CHAPTERVOICE_MODEL_ATTRIBUTION",
            "CHAPTERVOICE_MODEL_TTS",
            "CHAPTERVOICE_NARRATOR_VOICE",
            "OPENAI_API_KEY",
            "ELEVENLABS_API_KEY",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> ChaptervoiceConfig:
        """Create a validated config from a YAML file."""

        path_text = path.read_text(encoding="utf-8")
        payload = ConfigLoader._parse_yaml_payload(path_text, path)

        return ConfigLoader._build_config_from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> ChaptervoiceConfig:
        """Create a validated config from `CHAPTERVOICE_*` environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env

        values: dict[str, Any] = {}
        for key in ConfigLoader._PATH_KEYS:
            raw = ConfigLoader._optional_env_string(env_map, f"CHAPTERVOICE_{key.upper()}")
            if raw is not None:
                values[key] = Path(raw)
        for key in ConfigLoader._STRING_KEYS:
            if key.endswith("api_key"):
                continue
            raw = ConfigLoader._optional_env_string(env_map, f"CHAPTERVOICE_{key.upper()}")
            if raw is not None:
                values[key] = raw
        for key in ConfigLoader._INT_KEYS:
            parsed_int = ConfigLoader._optional_env_positive_int(
                env_map, f"CHAPTERVOICE_{key.upper()}"
            )
            if parsed_int is not None:
                values[key] = parsed_int
        for key in ConfigLoader._FLOAT_KEYS:
            parsed_float = ConfigLoader._optional_env_float(env_map, f"CHAPTERVOICE_{key.upper()}")
            if parsed_float is not None:
                values[key] = parsed_float
        announcement = env_map.get("CHAPTERVOICE_END_ANNOUNCEMENT_TEXT")
        if announcement is not None:
            values["end_announcement_text"] = announcement.strip()
        values["api_key"] = ConfigLoader._optional_env_string(env_map, "OPENAI_API_KEY")
        values["elevenlabs_api_key"] = ConfigLoader._optional_env_string(
            env_map, "ELEVENLABS_API_KEY"
        )

        runtime_env = {
            key: value
            for key, value in env_map.items()
            if key in ConfigLoader._RUNTIME_ENV_KEYS
            and normalize_optional_string(value) is not None
        }

        config = ChaptervoiceConfig(
            runtime_sources=RuntimeConfigSources(env=runtime_env),
            **values,
        )
        config.validate()
        return config

    @staticmethod
    def _parse_yaml_payload(raw_text: str, path: Path) -> Mapping[str, Any]:
        """Parse YAML text and enforce a mapping root payload."""

        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` could not be parsed: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return payload

    @staticmethod
    def _build_config_from_mapping(
        payload: Mapping[str, Any], source_label: str
    ) -> ChaptervoiceConfig:
        """Build a validated config from a normalized mapping payload."""

        ConfigLoader._validate_yaml_keys(payload, source_label)
        payload = ConfigLoader._flatten_transitions(payload, source_label)

        values: dict[str, Any] = {}
        for key in ConfigLoader._PATH_KEYS:
            raw = ConfigLoader._optional_non_empty_string(payload, key)
            if raw is not None:
                values[key] = Path(raw)
        for key in ConfigLoader._STRING_KEYS:
            raw = ConfigLoader._optional_non_empty_string(payload, key)
            if raw is not None:
                values[key] = raw
        for key in ConfigLoader._INT_KEYS:
            if key in payload:
                values[key] = ConfigLoader._positive_int(payload[key], key, source_label)
        for key in ConfigLoader._FLOAT_KEYS:
            if key in payload:
                values[key] = ConfigLoader._non_negative_float(payload[key], key, source_label)
        if "end_announcement_text" in payload:
            raw_announcement = payload["end_announcement_text"]
            values["end_announcement_text"] = (
                "" if raw_announcement is None else str(raw_announcement).strip()
            )
        values["voices"] = ConfigLoader._optional_string_map(payload, "voices", source_label)
        values["pronunciations"] = ConfigLoader._optional_string_map(
            payload, "pronunciations", source_label
        )
        aliases = payload.get("aliases") or {}
        if not isinstance(aliases, Mapping):
            raise ValueError(f"{source_label} field `aliases` must be a mapping/object.")
        values["aliases"] = dict(aliases)

        config = ChaptervoiceConfig(**values)
        config.validate()
        return config

    @staticmethod
    def _validate_yaml_keys(payload: Mapping[str, Any], source_label: str) -> None:
        """Reject unknown top-level keys."""

        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

    @staticmethod
    def _flatten_transitions(payload: Mapping[str, Any], source_label: str) -> dict[str, Any]:
        """Expand a nested `transitions` block into flat transition fields."""

        flattened = dict(payload)
        transitions = flattened.pop("transitions", None)
        if transitions is None:
            return flattened
        if not isinstance(transitions, Mapping):
            raise ValueError(f"{source_label} field `transitions` must be a mapping/object.")
        supported = {
            "intro_pause_seconds",
            "end_pause_seconds",
            "outro_pause_seconds",
            "end_announcement_text",
        }
        unknown = sorted(set(transitions).difference(supported))
        if unknown:
            raise ValueError(
                f"{source_label} field `transitions` includes unsupported key(s): "
                f"{', '.join(unknown)}."
            )
        flattened.update(transitions)
        return flattened

    @staticmethod
    def _optional_non_empty_string(payload: Mapping[str, Any], key: str) -> str | None:
        """Read an optional string field and normalize blank values to `None`."""

        if key not in payload:
            return None
        return normalize_optional_string(payload[key])

    @staticmethod
    def _positive_int(raw_value: Any, key: str, source_label: str) -> int:
        """Validate a positive integer payload value."""

        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be a positive integer.")
        try:
            parsed = int(str(raw_value).strip()) if not isinstance(raw_value, int) else raw_value
        except ValueError as exc:
            raise ValueError(f"{source_label} field `{key}` must be a positive integer.") from exc
        if parsed <= 0:
            raise ValueError(f"{source_label} field `{key}` must be a positive integer.")
        return parsed

    @staticmethod
    def _non_negative_float(raw_value: Any, key: str, source_label: str) -> float:
        """Validate a non-negative number payload value."""

        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be a non-negative number.")
        try:
            parsed = float(raw_value)
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"{source_label} field `{key}` must be a non-negative number."
            ) from exc
        if parsed < 0:
            raise ValueError(f"{source_label} field `{key}` must be a non-negative number.")
        return parsed

    @staticmethod
    def _optional_string_map(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> dict[str, str]:
        """Read an optional mapping with non-empty string keys and values."""

        if key not in payload:
            return {}

        raw = payload[key]
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")

        normalized: dict[str, str] = {}
        for raw_key, raw_value in raw.items():
            key_value = normalize_optional_string(raw_key)
            value_value = normalize_optional_string(raw_value)
            if key_value is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank key.")
            if value_value is None:
                raise ValueError(
                    f"{source_label} field `{key}` contains blank value for `{key_value}`."
                )
            normalized[key_value] = value_value
        return normalized

    @staticmethod
    def _optional_env_string(env: Mapping[str, str], key: str) -> str | None:
        """Read and normalize optional string environment variable values."""

        if key not in env:
            return None
        return normalize_optional_string(env.get(key))

    @staticmethod
    def _optional_env_positive_int(env: Mapping[str, str], key: str) -> int | None:
        """Read an optional positive integer from environment mapping."""

        raw_value = ConfigLoader._optional_env_string(env, key)
        if raw_value is None:
            return None
        try:
            parsed = int(raw_value)
        except ValueError as exc:
            raise ValueError(f"Environment variable `{key}` must be a positive integer.") from exc
        if parsed <= 0:
            raise ValueError(f"Environment variable `{key}` must be a positive integer.")
        return parsed

    @staticmethod
    def _optional_env_float(env: Mapping[str, str], key: str) -> float | None:
        """Read an optional non-negative number from environment mapping."""

        raw_value = ConfigLoader._optional_env_string(env, key)
        if raw_value is None:
            return None
        try:
            parsed = float(raw_value)
        except ValueError as exc:
            raise ValueError(f"Environment variable `{key}` must be a number.") from exc
        if parsed < 0:
            raise ValueError(f"Environment variable `{key}` must not be negative.")
        return parsed

