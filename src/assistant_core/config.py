"""Configuration manager with layered precedence merging."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from assistant_core.models import AppSettings
from assistant_core.providers import PROVIDERS

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openai"


def _package_config_dir() -> Path:
    """Return the config/ directory shipped with the package."""
    return Path(__file__).resolve().parent.parent.parent / "config"


def _user_config_dir() -> Path:
    """Return ~/.assistant-core/."""
    return Path.home() / ".assistant-core"


def _project_config_dir() -> Path:
    """Return .assistant-core/ in the current working directory."""
    return Path.cwd() / ".assistant-core"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found."""
    if path.is_file():
        with open(path) as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    return {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = dict(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _optional_int(value: Any) -> int | None:
    if value in (None, "", "off", "none", 0, "0"):
        return None
    return int(value)


def _validated(merged: dict[str, Any]) -> dict[str, Any]:
    """Replace unusable provider and max_tokens values with their defaults."""
    provider = merged.get("provider", DEFAULT_PROVIDER)
    if provider not in PROVIDERS:
        logger.warning(
            "Unknown provider %r in config, using %s", provider, DEFAULT_PROVIDER
        )
        merged["provider"] = DEFAULT_PROVIDER

    try:
        max_tokens = _optional_int(merged.get("max_tokens"))
    except (TypeError, ValueError):
        max_tokens = -1
    if max_tokens is not None and max_tokens <= 0:
        logger.warning(
            "Invalid max_tokens %r in config, using the provider default",
            merged.get("max_tokens"),
        )
        merged["max_tokens"] = None
    return merged


class ConfigManager:
    """Loads and merges configuration from multiple sources.

    Precedence (highest first):
      1. CLI overrides (set via set_override)
      2. Environment variables (ASSISTANT_*)
      3. Custom config file (--config)
      4. Project config: .assistant-core/settings.yaml
      5. User config: ~/.assistant-core/settings.yaml
      6. Package defaults: config/settings.yaml
    """

    def __init__(
        self,
        *,
        config_path: str | None = None,
        cli_overrides: dict[str, Any] | None = None,
    ) -> None:
        self._cli_overrides = cli_overrides or {}
        self._config_path = Path(config_path) if config_path else None
        self._merged: dict[str, Any] = {}
        self._system_prompt: str = ""
        self._load()

    def _load(self) -> None:
        """Load and merge all config sources."""
        pkg_dir = _package_config_dir()

        merged = _load_yaml(pkg_dir / "settings.yaml")
        merged = _deep_merge(merged, _load_yaml(_user_config_dir() / "settings.yaml"))
        merged = _deep_merge(
            merged, _load_yaml(_project_config_dir() / "settings.yaml")
        )
        if self._config_path:
            merged = _deep_merge(merged, _load_yaml(self._config_path))

        env_map: dict[str, str] = {
            "ASSISTANT_PROVIDER": "provider",
            "ASSISTANT_MAX_TOKENS": "max_tokens",
            "ASSISTANT_LOCAL_URL": "local_url",
            "ASSISTANT_STATE_BACKEND": "state_backend",
            "ASSISTANT_VERBOSE": "verbose",
        }
        for env_key, config_key in env_map.items():
            val = os.environ.get(env_key)
            if val is not None:
                if val.lower() in ("true", "false"):
                    merged[config_key] = val.lower() == "true"
                else:
                    merged[config_key] = val

        # ASSISTANT_MODEL applies to whichever provider ends up active
        env_model = os.environ.get("ASSISTANT_MODEL")
        if env_model:
            provider = self._cli_overrides.get("provider", merged.get("provider", DEFAULT_PROVIDER))
            merged = _deep_merge(merged, {"models": {provider: env_model}})

        merged = _deep_merge(merged, self._cli_overrides)
        self._merged = _validated(merged)

        prompt_data = _load_yaml(pkg_dir / "system_prompt.yaml")
        self._system_prompt = str(prompt_data.get("system_prompt", "")).strip()

    def set_override(self, key: str, value: Any) -> None:
        """Set a CLI-level override."""
        self._cli_overrides[key] = value
        self._load()

    @property
    def settings(self) -> AppSettings:
        """Build AppSettings from merged config."""
        models = self._merged.get("models") or {}
        return AppSettings(
            provider=str(self._merged.get("provider", DEFAULT_PROVIDER)),
            models={str(k): str(v) for k, v in models.items() if v},
            local_url=str(
                self._merged.get("local_url", "http://localhost:1234/api/v1/chat")
            ),
            max_tokens=_optional_int(self._merged.get("max_tokens")),
            streaming=bool(self._merged.get("streaming", True)),
            request_timeout=float(self._merged.get("request_timeout", 600.0)),
            connect_timeout=float(self._merged.get("connect_timeout", 10.0)),
            state_backend=str(self._merged.get("state_backend", "json")),
            state_path=str(
                self._merged.get("state_path", "~/.assistant-core/state.json")
            ),
            state_db=str(self._merged.get("state_db", "~/.assistant-core/state.db")),
            title_max_length=int(self._merged.get("title_max_length", 40)),
            context_max_files=int(self._merged.get("context_max_files", 20)),
            context_max_chars=int(self._merged.get("context_max_chars", 3000)),
            blocked_write_patterns=list(
                self._merged.get("blocked_write_patterns") or []
            ),
            system_prompt_extra=str(self._merged.get("system_prompt_extra", "")),
        )

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by key."""
        return self._merged.get(key, default)

    def get_model(self, provider: str | None = None) -> str | None:
        """Return the configured model override for a provider, if any."""
        settings = self.settings
        return settings.models.get(provider or settings.provider)

    def get_system_prompt(self) -> str:
        """Return the system prompt, including any user-configured extra text."""
        extra = self.settings.system_prompt_extra.strip()
        if extra and self._system_prompt:
            return f"{self._system_prompt}\n\n{extra}"
        return extra or self._system_prompt

    @property
    def raw(self) -> dict[str, Any]:
        """Return the raw merged config dict."""
        return dict(self._merged)
