"""Stream controller: one cancellable, streaming exchange at a time.

An exchange runs send -> stream -> settle. It settles on exactly one of:

* a ``done`` event carrying the final text (or a one-shot backend returning),
* a ``done`` event flagged ``cancelled`` / the cancellation sentinel,
* a local ``cancel()``,
* a backend failure.

Whichever arrives first wins. Every channel subscription of the exchange is
torn down inside the winning branch, so late events from an abandoned
request can never reach a later exchange's buffer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from assistant_core.backend import CANCELLED_SENTINEL, ModelBackend, is_cancellation
from assistant_core.channel import (
    DONE_EVENT,
    ERROR_EVENT,
    TOKEN_EVENT,
    EventChannel,
    Subscription,
)
from assistant_core.models import (
    ExchangeOutcome,
    GenerateResult,
    Message,
    StreamPhase,
    StreamState,
)
from assistant_core.providers import GenerateRequest
from assistant_core.session import SessionDraft
from assistant_core.trimmer import trim_to_sentence

logger = logging.getLogger(__name__)

RequestBuilder = Callable[[str, "str | None"], GenerateRequest]


class ExchangeInFlightError(RuntimeError):
    """Raised when ``send`` is called while another exchange is in flight."""


def error_text(exc: BaseException) -> str:
    """Text of the synthetic assistant message for a failed exchange."""
    reason = str(exc) or exc.__class__.__name__
    return f"**Error:** {reason}"


class StreamController:
    """Runs exchanges against a model backend over a push event channel."""

    def __init__(
        self,
        draft: SessionDraft,
        backend: ModelBackend,
        channel: EventChannel,
        build_request: RequestBuilder,
    ) -> None:
        self._draft = draft
        self._backend = backend
        self._channel = channel
        self._build_request = build_request
        self._state = StreamState()
        self._settled: asyncio.Future[tuple[str, Any]] | None = None
        self._invoke: asyncio.Task[GenerateResult] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._state.in_flight

    async def send(
        self,
        user_text: str,
        attachment: str | None = None,
        *,
        on_token: Callable[[str], None] | None = None,
    ) -> ExchangeOutcome:
        """Run one exchange and return how it settled.

        Backend failures become a synthetic assistant message; they are never
        raised. Only a concurrent ``send`` raises (ExchangeInFlightError).
        """
        if self._state.in_flight:
            raise ExchangeInFlightError("An exchange is already in flight")

        image = attachment if attachment is not None else self._draft.attachment

        # Phase 1: optimistic append
        user_msg = Message(role="user", text=user_text, image_base64=image)
        self._draft.append(user_msg)
        state = StreamState(phase=StreamPhase.SENDING)
        self._state = state

        loop = asyncio.get_running_loop()
        settled: asyncio.Future[tuple[str, Any]] = loop.create_future()
        self._settled = settled

        def settle(kind: str, value: Any) -> None:
            if not settled.done():
                settled.set_result((kind, value))

        def handle_token(payload: dict[str, Any]) -> None:
            if settled.done():
                return
            token = str(payload.get("text", ""))
            state.buffer += token
            if on_token is not None and token:
                on_token(token)

        def handle_done(payload: dict[str, Any]) -> None:
            if payload.get("cancelled"):
                settle(StreamPhase.CANCELLED, None)
            else:
                text = payload.get("text")
                settle(StreamPhase.DONE, state.buffer if text is None else str(text))

        def handle_error(payload: dict[str, Any]) -> None:
            message = str(payload.get("message", "")) or "Backend error"
            if message == CANCELLED_SENTINEL:
                settle(StreamPhase.CANCELLED, None)
            else:
                settle(StreamPhase.ERROR, RuntimeError(message))

        # Phase 2: subscribe before invoking so the first token cannot be lost
        subscriptions: list[Subscription] = [
            self._channel.subscribe(TOKEN_EVENT, handle_token),
            self._channel.subscribe(DONE_EVENT, handle_done),
            self._channel.subscribe(ERROR_EVENT, handle_error),
        ]

        max_tokens: int | None = None
        try:
            try:
                request = self._build_request(user_text, image)
            except Exception as e:
                settle(StreamPhase.ERROR, e)
            else:
                max_tokens = request.max_tokens
                state.phase = StreamPhase.STREAMING
                invoke = asyncio.ensure_future(
                    self._backend.generate(request, self._channel)
                )
                self._invoke = invoke

                def invoke_finished(task: asyncio.Task[GenerateResult]) -> None:
                    if task.cancelled():
                        settle(StreamPhase.CANCELLED, None)
                        return
                    exc = task.exception()
                    if exc is None:
                        settle(StreamPhase.DONE, task.result().text)
                    elif is_cancellation(exc):
                        settle(StreamPhase.CANCELLED, None)
                    else:
                        settle(StreamPhase.ERROR, exc)

                invoke.add_done_callback(invoke_finished)

            try:
                kind, value = await settled
            except asyncio.CancelledError:
                # The caller's task went away mid-exchange
                self._schedule_abort()
                self._state = StreamState()
                raise
        finally:
            for sub in subscriptions:
                sub.unsubscribe()
            self._settled = None
            self._invoke = None

        return self._finish(state, kind, value, max_tokens)

    def _finish(
        self,
        state: StreamState,
        kind: str,
        value: Any,
        max_tokens: int | None,
    ) -> ExchangeOutcome:
        state.phase = kind
        try:
            if kind == StreamPhase.DONE:
                text = trim_to_sentence(str(value or ""), max_tokens)
                msg = Message(role="assistant", text=text)
                self._draft.append(msg)
                self._draft.attachment = None
                logger.debug("Exchange completed (%d chars)", len(text))
                return ExchangeOutcome(status=ExchangeOutcome.COMPLETED, message=msg)

            if kind == StreamPhase.CANCELLED:
                logger.debug("Exchange cancelled; discarded %d buffered chars", len(state.buffer))
                return ExchangeOutcome(status=ExchangeOutcome.CANCELLED)

            logger.warning("Exchange failed: %s", value)
            msg = Message(role="assistant", text=error_text(value))
            self._draft.append(msg)
            return ExchangeOutcome(status=ExchangeOutcome.ERROR, message=msg)
        finally:
            state.buffer = ""
            self._state = StreamState()

    def cancel(self) -> None:
        """Settle the pending exchange as cancelled and ask the backend to abort.

        Local settlement is synchronous; the abort runs in the background and
        is never awaited here.
        """
        settled = self._settled
        if settled is None or settled.done():
            return
        settled.set_result((StreamPhase.CANCELLED, None))
        self._schedule_abort()

    def _schedule_abort(self) -> None:
        abort = asyncio.ensure_future(self._abort(self._invoke))
        self._background.add(abort)
        abort.add_done_callback(self._background.discard)

    async def _abort(self, invoke: asyncio.Task[GenerateResult] | None) -> None:
        try:
            await self._backend.abort()
        except Exception:
            logger.warning("Backend abort failed", exc_info=True)
        if invoke is not None and not invoke.done():
            invoke.cancel()

    async def drain(self) -> None:
        """Wait for background abort tasks to finish (used on shutdown)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
