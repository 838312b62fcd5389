from __future__ import annotations

import pytest

from persona_relay.common.config import get_settings
from persona_relay.common.errors import StartupError
from persona_relay.queue import redis as redis_mod


def test_redis_client_requires_url(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "redis_url", None)
    monkeypatch.setattr(redis_mod, "_client", None)
    with pytest.raises(StartupError):
        redis_mod.redis_client()


def test_redis_client_uses_connect_timeout(monkeypatch) -> None:
    s = get_settings()
    monkeypatch.setattr(s, "redis_url", "redis://localhost:6399/0")
    monkeypatch.setattr(s, "redis_connect_timeout_sec", 5.0)
    monkeypatch.setattr(redis_mod, "_client", None)
    try:
        client = redis_mod.redis_client()
        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["socket_connect_timeout"] == 5.0
        assert redis_mod.redis_client() is client
    finally:
        redis_mod.close_redis_client()
    assert redis_mod._client is None
