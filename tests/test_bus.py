from __future__ import annotations

import logging
from dataclasses import dataclass

import pytest

from papertrader.bus import EventBus


@dataclass(frozen=True)
class E:
    x: int


def test_bus_publish_subscribe() -> None:
    bus = EventBus()
    seen: list[int] = []

    def h(e: E) -> None:
        seen.append(e.x)

    bus.subscribe(E, h)
    bus.publish(E(1))
    bus.publish(E(2))

    assert seen == [1, 2]


def test_failing_handler_does_not_stop_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    seen: list[int] = []

    def boom(e: E) -> None:
        raise RuntimeError("boom")

    bus.subscribe(E, boom)
    bus.subscribe(E, lambda e: seen.append(e.x))

    with caplog.at_level(logging.ERROR, logger="bus"):
        delivered = bus.publish(E(3))

    assert delivered == 1
    assert seen == [3]
    assert any(r.getMessage() == "handler_failed" for r in caplog.records)


def test_unsubscribe() -> None:
    bus = EventBus()
    seen: list[int] = []
    handler = lambda e: seen.append(e.x)  # noqa: E731
    bus.subscribe(E, handler)
    bus.unsubscribe(E, handler)

    assert bus.publish(E(1)) == 0
    assert seen == []
