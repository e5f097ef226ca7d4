from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from hiring_oracle.integration.event_bus import InMemoryEventBus
from hiring_oracle.integration.events import DomainEvent


@dataclass(frozen=True)
class _Evt(DomainEvent):
    value: int


@dataclass(frozen=True)
class _SubEvt(_Evt):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def test_event_bus_publish_subscribe() -> None:
    bus = InMemoryEventBus()
    seen: list[int] = []

    def handler(e: _Evt) -> None:
        seen.append(e.value)

    bus.subscribe(_Evt, handler)
    bus.publish(_Evt(occurred_at=_now(), value=1))
    bus.publish(_SubEvt(occurred_at=_now(), value=2))

    assert seen == [1, 2]


def test_unsubscribe_stops_delivery() -> None:
    bus = InMemoryEventBus()
    seen: list[int] = []
    unsubscribe = bus.subscribe(_Evt, lambda e: seen.append(e.value))

    bus.publish(_Evt(occurred_at=_now(), value=1))
    unsubscribe()
    bus.publish(_Evt(occurred_at=_now(), value=2))

    assert seen == [1]


def test_failing_handler_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = InMemoryEventBus()
    seen: list[int] = []

    def broken(e: _Evt) -> None:
        raise RuntimeError("boom")

    bus.subscribe(_Evt, broken)
    bus.subscribe(_Evt, lambda e: seen.append(e.value))

    with caplog.at_level(logging.ERROR):
        bus.publish(_Evt(occurred_at=_now(), value=7))

    assert seen == [7]
    assert bus.failures == 1
    assert "Event handler failed" in caplog.text
