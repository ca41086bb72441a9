"""API key storage: load, save, and check per-provider credentials."""

from __future__ import annotations

import os
import stat
from pathlib import Path

from dotenv import dotenv_values, set_key


class CredentialError(Exception):
    """Raised when a provider's credentials are missing or unusable."""


KEY_NAMES: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "claude": "ANTHROPIC_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "local": "LOCAL_API_KEY",
}


def _env_path() -> Path:
    """Return the path to ~/.assistant-core/.env."""
    return Path.home() / ".assistant-core" / ".env"


class CredentialStore:
    """Manages provider API keys in a dotenv file."""

    def __init__(self, env_path: Path | None = None) -> None:
        self._env_path = env_path or _env_path()

    @staticmethod
    def key_name(provider: str) -> str:
        try:
            return KEY_NAMES[provider]
        except KeyError:
            raise CredentialError(f"Unknown provider: {provider}") from None

    def get_key(self, provider: str) -> str:
        """Return the API key for ``provider``, or "" when none is stored."""
        name = self.key_name(provider)

        # Environment wins over the file
        env_key = os.environ.get(name)
        if env_key:
            return env_key

        if not self._env_path.is_file():
            return ""
        values = dotenv_values(self._env_path)
        return values.get(name) or ""

    def save_key(self, provider: str, key: str) -> None:
        """Save a key to the .env file with chmod 600."""
        name = self.key_name(provider)
        self._env_path.parent.mkdir(parents=True, exist_ok=True)
        if not self._env_path.exists():
            self._env_path.touch()
        set_key(str(self._env_path), name, key, quote_mode="never")
        self._env_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def status(self) -> dict[str, bool]:
        """Return which providers currently have a key configured."""
        return {provider: bool(self.get_key(provider)) for provider in KEY_NAMES}

    def get_permissions(self) -> int | None:
        """Return the file permissions of the .env file, or None."""
        if not self._env_path.is_file():
            return None
        return stat.S_IMODE(self._env_path.stat().st_mode)
