from __future__ import annotations

import pytest
import redis

from persona_relay.common.errors import StoreUnavailableError
from persona_relay.queue.claims import (
    InlineClaimStore,
    RedisClaimStore,
    get_claim_store,
    reset_claim_store,
)


def test_inline_claim_window(clock) -> None:
    store = InlineClaimStore(clock=clock.seconds)
    assert store.claim("cd:g1:c1:u1", 750) is True
    clock.advance(200)
    assert store.claim("cd:g1:c1:u1", 750) is False
    clock.advance(549)
    assert store.claim("cd:g1:c1:u1", 750) is False
    clock.advance(1)
    assert store.claim("cd:g1:c1:u1", 750) is True


def test_inline_claim_keys_are_independent(clock) -> None:
    store = InlineClaimStore(clock=clock.seconds)
    assert store.claim("k-1", 1000) is True
    assert store.claim("k-2", 1000) is True
    assert store.claim("k-1", 1000) is False


def test_redis_claim_uses_set_nx_px(fake_redis) -> None:
    store = RedisClaimStore(client=fake_redis)
    assert store.claim("dupe:dm:c1:Proxy:abc", 2000) is True
    assert fake_redis.px["dupe:dm:c1:Proxy:abc"] == 2000
    assert store.claim("dupe:dm:c1:Proxy:abc", 2000) is False

    fake_redis.expire_now("dupe:dm:c1:Proxy:abc")
    assert store.claim("dupe:dm:c1:Proxy:abc", 2000) is True


def test_redis_claim_wraps_connection_errors(fake_redis) -> None:
    fake_redis.fail_with = redis.ConnectionError("Connection refused")
    store = RedisClaimStore(client=fake_redis)
    with pytest.raises(StoreUnavailableError):
        store.claim("cd:dm:c1:u1", 750)


def test_get_claim_store_follows_queue_mode() -> None:
    assert isinstance(get_claim_store(), InlineClaimStore)
    custom = InlineClaimStore()
    reset_claim_store(custom)
    assert get_claim_store() is custom
