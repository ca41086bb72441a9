"""Tests for the push event channel."""

from __future__ import annotations

from typing import Any

from assistant_core.channel import TOKEN_EVENT, EventChannel


class TestEventChannel:
    def test_delivers_in_order(self) -> None:
        channel = EventChannel()
        seen: list[str] = []
        channel.subscribe(TOKEN_EVENT, lambda p: seen.append(p["text"]))
        for token in ("a", "b", "c"):
            channel.emit(TOKEN_EVENT, {"text": token})
        assert seen == ["a", "b", "c"]

    def test_unsubscribe_stops_delivery(self) -> None:
        channel = EventChannel()
        seen: list[Any] = []
        sub = channel.subscribe(TOKEN_EVENT, seen.append)
        sub.unsubscribe()
        assert channel.emit(TOKEN_EVENT, {"text": "late"}) == 0
        assert seen == []
        assert not sub.active
        assert channel.listener_count() == 0

    def test_unsubscribe_is_idempotent(self) -> None:
        channel = EventChannel()
        sub = channel.subscribe(TOKEN_EVENT, lambda p: None)
        sub.unsubscribe()
        sub.unsubscribe()
        assert channel.listener_count(TOKEN_EVENT) == 0

    def test_unsubscribe_during_emit_skips_later_listener(self) -> None:
        channel = EventChannel()
        seen: list[str] = []
        second = None

        def first(payload: dict[str, Any]) -> None:
            seen.append("first")
            assert second is not None
            second.unsubscribe()

        channel.subscribe(TOKEN_EVENT, first)
        second = channel.subscribe(TOKEN_EVENT, lambda p: seen.append("second"))
        channel.emit(TOKEN_EVENT, {})
        assert seen == ["first"]

    def test_listener_error_is_isolated(self) -> None:
        channel = EventChannel()
        seen: list[str] = []

        def broken(payload: dict[str, Any]) -> None:
            raise RuntimeError("boom")

        channel.subscribe(TOKEN_EVENT, broken)
        channel.subscribe(TOKEN_EVENT, lambda p: seen.append("ok"))
        assert channel.emit(TOKEN_EVENT, {}) == 2
        assert seen == ["ok"]

    def test_events_are_independent(self) -> None:
        channel = EventChannel()
        seen: list[str] = []
        channel.subscribe("a", lambda p: seen.append("a"))
        channel.emit("b", {})
        assert seen == []
