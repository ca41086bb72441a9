"""Provider configs: one shared request contract, one variant per backend API."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar

CONTEXT_HEADER = "\n\n---\n**PROJECT CONTEXT (read-only)**\n"

REASONING_NOTICE = (
    "\n\n*(The model returned only its reasoning. "
    "Raise the output token limit for a full answer.)*"
)


def resolve_path(data: Any, path: str) -> Any:
    """Resolve a dotted path with optional array indexing.

    Examples:
        resolve_path({"a": {"b": 1}}, "a.b") -> 1
        resolve_path({"choices": [{"delta": {"content": "hi"}}]},
                     "choices[0].delta.content") -> "hi"
    """
    current: Any = data
    for segment in path.split("."):
        if current is None:
            return None
        match = re.match(r"^(\w+)\[(\d+)\]$", segment)
        if match:
            key, idx = match.group(1), int(match.group(2))
            if isinstance(current, dict):
                current = current.get(key)
            else:
                return None
            if isinstance(current, list) and idx < len(current):
                current = current[idx]
            else:
                return None
        else:
            if isinstance(current, dict):
                current = current.get(segment)
            else:
                return None
    return current


def _first_text(data: Any, paths: tuple[str, ...]) -> str:
    for path in paths:
        value = resolve_path(data, path)
        if isinstance(value, str) and value:
            return value
    return ""


def build_prompt(prompt: str, context_files: list[str] | None) -> str:
    """Append read-only project context blocks to the user prompt."""
    if not context_files:
        return prompt
    return prompt + CONTEXT_HEADER + "".join(f"{chunk}\n" for chunk in context_files)


# ---------------------------------------------------------------------------
# Provider variants
# ---------------------------------------------------------------------------


@dataclass
class ProviderConfig:
    """Common contract every provider variant implements."""

    api_key: str = ""
    model: str | None = None

    name: ClassVar[str] = ""
    label: ClassVar[str] = ""
    endpoint_url: ClassVar[str] = ""
    default_model: ClassVar[str] = ""
    default_max_tokens: ClassVar[int] = 2048
    requires_key: ClassVar[bool] = True
    supports_images: ClassVar[bool] = True
    supports_streaming: ClassVar[bool] = True
    text_paths: ClassVar[tuple[str, ...]] = ("choices[0].message.content",)
    delta_paths: ClassVar[tuple[str, ...]] = ("choices[0].delta.content",)

    @property
    def resolved_model(self) -> str:
        return self.model or self.default_model

    @property
    def url(self) -> str:
        return self.endpoint_url

    def missing_configuration(self) -> str | None:
        """Return a user-facing reason the provider cannot be called, or None."""
        if self.requires_key and not self.api_key:
            return f"{self.label} API key is required"
        return None

    def headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"authorization": f"Bearer {self.api_key}"}

    def build_payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        raise NotImplementedError

    def extract_text(self, data: dict[str, Any]) -> str:
        return _first_text(data, self.text_paths).strip()

    def extract_delta(self, chunk: dict[str, Any]) -> str:
        return _first_text(chunk, self.delta_paths)

    def extract_tokens(self, data: dict[str, Any]) -> int | None:
        total = resolve_path(data, "usage.total_tokens")
        return int(total) if isinstance(total, int) else None

    def error_message(self, status_code: int, data: Any) -> str:
        detail = resolve_path(data, "error.message") if isinstance(data, dict) else None
        return f"{self.label} {status_code}: {detail or 'unknown error'}"

    def stream_error(self, chunk: dict[str, Any]) -> str | None:
        """Return the failure a streamed chunk reports, or None for a normal chunk.

        Claude sends ``{"type": "error", ...}``; OpenAI-style servers send a
        top-level ``error`` object.
        """
        if chunk.get("type") != "error" and not chunk.get("error"):
            return None
        error = chunk.get("error")
        detail = error if isinstance(error, str) else resolve_path(chunk, "error.message")
        return f"{self.label} stream error: {detail or 'unknown error'}"


@dataclass
class OpenAICompatibleProvider(ProviderConfig):
    """Chat-completions style API (OpenAI, DeepSeek, OpenRouter, local servers)."""

    def system_messages(self, request: GenerateRequest) -> list[dict[str, Any]]:
        sys = (request.system_prompt or "").strip()
        return [{"role": "system", "content": sys}] if sys else []

    def user_text(self, request: GenerateRequest) -> str:
        return build_prompt(request.prompt, request.context_files)

    def user_message(self, request: GenerateRequest) -> dict[str, Any]:
        text = self.user_text(request)
        if request.image_base64 and self.supports_images:
            return {"role": "user", "content": [
                {"type": "text", "text": text},
                {"type": "image_url", "image_url": {
                    "url": f"data:image/png;base64,{request.image_base64}",
                }},
            ]}
        return {"role": "user", "content": text}

    def build_payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.resolved_model,
            "messages": self.system_messages(request) + [self.user_message(request)],
            "max_tokens": request.max_tokens or self.default_max_tokens,
        }
        if stream:
            payload["stream"] = True
        return payload

    def extract_text(self, data: dict[str, Any]) -> str:
        content = _first_text(data, self.text_paths).strip()
        if content:
            return content
        # Chain-of-thought models put the answer in 'reasoning' when content is empty
        reasoning = _first_text(data, ("choices[0].message.reasoning",)).strip()
        if reasoning:
            return reasoning + REASONING_NOTICE
        return ""


@dataclass
class OpenAIProvider(OpenAICompatibleProvider):
    name: ClassVar[str] = "openai"
    label: ClassVar[str] = "OpenAI"
    endpoint_url: ClassVar[str] = "https://api.openai.com/v1/chat/completions"
    default_model: ClassVar[str] = "gpt-4o"

    def user_message(self, request: GenerateRequest) -> dict[str, Any]:
        # Vision requests always use the content-part array
        content: list[dict[str, Any]] = [
            {"type": "text", "text": self.user_text(request)},
        ]
        if request.image_base64:
            content.append({"type": "image_url", "image_url": {
                "url": f"data:image/png;base64,{request.image_base64}",
                "detail": "high",
            }})
        return {"role": "user", "content": content}


@dataclass
class DeepSeekProvider(OpenAICompatibleProvider):
    name: ClassVar[str] = "deepseek"
    label: ClassVar[str] = "DeepSeek"
    endpoint_url: ClassVar[str] = "https://api.deepseek.com/v1/chat/completions"
    default_model: ClassVar[str] = "deepseek-chat"
    supports_images: ClassVar[bool] = False


@dataclass
class OpenRouterProvider(OpenAICompatibleProvider):
    name: ClassVar[str] = "openrouter"
    label: ClassVar[str] = "OpenRouter"
    endpoint_url: ClassVar[str] = "https://openrouter.ai/api/v1/chat/completions"
    default_model: ClassVar[str] = "openai/gpt-4o"

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["HTTP-Referer"] = "https://github.com/assistant-core"
        headers["X-Title"] = "Assistant Core"
        return headers


@dataclass
class LocalProvider(OpenAICompatibleProvider):
    """LM Studio, Ollama, or any OpenAI-compatible local server."""

    base_url: str = ""

    name: ClassVar[str] = "local"
    label: ClassVar[str] = "Local model"
    default_model: ClassVar[str] = "local-model"
    default_max_tokens: ClassVar[int] = 4096
    requires_key: ClassVar[bool] = False
    supports_streaming: ClassVar[bool] = False

    @property
    def url(self) -> str:
        base = self.base_url.strip().rstrip("/")
        _, _, rest = base.partition("://")
        if "/" in rest:
            return base
        return f"{base}/v1/chat/completions"

    def missing_configuration(self) -> str | None:
        if not self.base_url.strip():
            return (
                "Local LLM server URL is required "
                "(e.g. http://localhost:1234/api/v1/chat)"
            )
        return None

    def system_messages(self, request: GenerateRequest) -> list[dict[str, Any]]:
        # Many local chat templates reject the system role; fold it into the user turn
        return []

    def user_text(self, request: GenerateRequest) -> str:
        text = super().user_text(request)
        sys = (request.system_prompt or "").strip()
        return f"{sys}\n\n{text}" if sys else text

    def build_payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        # Some LM Studio versions reject an explicit "stream" key, so never send it
        return super().build_payload(request, stream=False)


@dataclass
class ClaudeProvider(ProviderConfig):
    name: ClassVar[str] = "claude"
    label: ClassVar[str] = "Claude"
    endpoint_url: ClassVar[str] = "https://api.anthropic.com/v1/messages"
    default_model: ClassVar[str] = "claude-3-5-sonnet-20241022"
    text_paths: ClassVar[tuple[str, ...]] = ("content[0].text",)
    delta_paths: ClassVar[tuple[str, ...]] = ("delta.text",)

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }

    def build_payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        if request.image_base64:
            content.append({"type": "image", "source": {
                "type": "base64",
                "media_type": "image/png",
                "data": request.image_base64,
            }})
        content.append({
            "type": "text",
            "text": build_prompt(request.prompt, request.context_files),
        })
        payload: dict[str, Any] = {
            "model": self.resolved_model,
            "max_tokens": request.max_tokens or self.default_max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        sys = (request.system_prompt or "").strip()
        if sys:
            payload["system"] = sys
        if stream:
            payload["stream"] = True
        return payload

    def extract_tokens(self, data: dict[str, Any]) -> int | None:
        usage = data.get("usage")
        if not isinstance(usage, dict):
            return None
        return int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))


PROVIDERS: dict[str, type[ProviderConfig]] = {
    cls.name: cls
    for cls in (
        OpenAIProvider,
        ClaudeProvider,
        DeepSeekProvider,
        OpenRouterProvider,
        LocalProvider,
    )
}


def build_provider(
    name: str,
    *,
    api_key: str = "",
    model: str | None = None,
    local_url: str = "",
) -> ProviderConfig:
    """Construct the provider variant registered under ``name``."""
    cls = PROVIDERS.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown provider '{name}'. Choose one of: {', '.join(sorted(PROVIDERS))}"
        )
    if cls is LocalProvider:
        return LocalProvider(api_key=api_key, model=model, base_url=local_url)
    return cls(api_key=api_key, model=model)


# ---------------------------------------------------------------------------
# Request contract
# ---------------------------------------------------------------------------


@dataclass
class GenerateRequest:
    """One generation call, independent of which provider serves it."""

    provider: ProviderConfig
    prompt: str
    system_prompt: str | None = None
    image_base64: str | None = None
    context_files: list[str] = field(default_factory=list)
    max_tokens: int | None = None
