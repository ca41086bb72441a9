"""Async HTTP model backend that pushes streamed tokens onto an event channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from assistant_core.channel import DONE_EVENT, TOKEN_EVENT, EventChannel
from assistant_core.models import GenerateResult
from assistant_core.providers import GenerateRequest, ProviderConfig
from assistant_core.streaming import aparse_sse_lines

logger = logging.getLogger(__name__)

# Error text a backend uses to report that its request was aborted.
CANCELLED_SENTINEL = "__CANCELLED__"


class BackendError(Exception):
    """Raised when the model backend fails (HTTP error, network, bad config)."""


class ExchangeCancelled(Exception):
    """Raised to signal cancellation distinctly from failure."""


def is_cancellation(exc: BaseException) -> bool:
    """True when ``exc`` is the cancellation sentinel rather than a failure."""
    if isinstance(exc, (ExchangeCancelled, asyncio.CancelledError)):
        return True
    return str(exc) == CANCELLED_SENTINEL


@runtime_checkable
class ModelBackend(Protocol):
    """Interface for generative backends."""

    async def generate(
        self, request: GenerateRequest, channel: EventChannel | None = None
    ) -> GenerateResult: ...

    async def abort(self) -> None: ...


class HttpModelBackend:
    """Calls provider HTTP APIs with httpx, streaming where the provider allows."""

    def __init__(
        self,
        *,
        timeout: float = 600.0,
        connect_timeout: float = 10.0,
        streaming: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._streaming = streaming
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._active: asyncio.Task[Any] | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create and return an httpx.AsyncClient."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def generate(
        self, request: GenerateRequest, channel: EventChannel | None = None
    ) -> GenerateResult:
        """Run one generation, emitting token/done events on ``channel``."""
        provider = request.provider
        reason = provider.missing_configuration()
        if reason:
            raise BackendError(reason)

        task = asyncio.current_task()
        self._active = task
        stream = (
            self._streaming and provider.supports_streaming and channel is not None
        )
        logger.debug(
            "POST %s model=%s stream=%s", provider.url, provider.resolved_model, stream
        )
        try:
            if stream:
                return await self._stream(request, channel)
            return await self._complete(request, channel)
        except asyncio.CancelledError:
            if channel is not None:
                channel.emit(DONE_EVENT, {"cancelled": True})
            raise
        except httpx.HTTPError as e:
            raise BackendError(f"Network error: {e}") from e
        finally:
            if self._active is task:
                self._active = None

    async def _complete(
        self, request: GenerateRequest, channel: EventChannel | None
    ) -> GenerateResult:
        provider = request.provider
        resp = await self._get_client().post(
            provider.url,
            json=provider.build_payload(request, stream=False),
            headers=provider.headers(),
        )
        data = self._decode(resp)
        if resp.status_code >= 400:
            raise BackendError(provider.error_message(resp.status_code, data))

        result = GenerateResult(
            text=provider.extract_text(data),
            model=str(data.get("model") or provider.resolved_model),
            tokens_used=provider.extract_tokens(data),
        )
        if channel is not None:
            channel.emit(DONE_EVENT, {"text": result.text})
        return result

    async def _stream(
        self, request: GenerateRequest, channel: EventChannel
    ) -> GenerateResult:
        provider = request.provider
        parts: list[str] = []
        model = provider.resolved_model
        tokens: int | None = None

        async with self._get_client().stream(
            "POST",
            provider.url,
            json=provider.build_payload(request, stream=True),
            headers={**provider.headers(), "accept": "text/event-stream"},
        ) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise BackendError(
                    provider.error_message(resp.status_code, self._decode(resp))
                )
            async for chunk in aparse_sse_lines(resp.aiter_lines()):
                error = provider.stream_error(chunk)
                if error:
                    raise BackendError(error)
                delta = provider.extract_delta(chunk)
                if delta:
                    parts.append(delta)
                    channel.emit(TOKEN_EVENT, {"text": delta})
                model = str(chunk.get("model") or model)
                tokens = provider.extract_tokens(chunk) or tokens

        text = "".join(parts)
        channel.emit(DONE_EVENT, {"text": text})
        return GenerateResult(text=text, model=model, tokens_used=tokens)

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {"error": {"message": resp.text[:500] or resp.reason_phrase}}
        return data if isinstance(data, dict) else {}

    async def abort(self) -> None:
        """Cancel the in-flight request, if any."""
        task = self._active
        if task is not None and not task.done():
            logger.info("Aborting in-flight model request")
            task.cancel()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def describe_provider(provider: ProviderConfig) -> dict[str, Any]:
    """Summarize a provider for display."""
    return {
        "name": provider.name,
        "label": provider.label,
        "model": provider.resolved_model,
        "url": provider.url,
        "streaming": provider.supports_streaming,
        "vision": provider.supports_images,
    }
