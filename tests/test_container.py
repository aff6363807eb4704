"""Tests for the service container."""

from __future__ import annotations

import pytest

from onebox.core.container import ServiceContainer


def test_resolve_creates_once_and_tracks_order() -> None:
    calls: list[str] = []
    container = ServiceContainer()
    container.register("config", lambda _c: calls.append("config") or {"name": "demo"})
    container.register("client", lambda c: ("client", c.resolve("config")))

    client = container.resolve("client")

    assert container.resolve("client") is client
    assert calls == ["config"]
    assert [key for key, _ in container.resolved()] == ["client", "config"]


def test_unknown_and_late_registration_errors() -> None:
    container = ServiceContainer()
    container.register("value", lambda _c: 1)
    container.resolve("value")

    with pytest.raises(KeyError):
        container.resolve("missing")
    with pytest.raises(ValueError):
        container.register("value", lambda _c: 2)
