"""
Unit tests for the GraphQL rate limiter and counter stores.
"""

import threading

import pytest
from django.core.cache import caches
from django.test import RequestFactory

from query_shield.rate_limiting import (
    CacheCounterStore,
    MemoryCounterStore,
    RateLimiter,
    client_key,
    get_client_ip,
    is_likely_build_process,
)
from query_shield.security.graphql.config import EffectiveConfig

pytestmark = pytest.mark.unit


class _FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class _BrokenStore:
    def get(self, key):
        raise ConnectionError("store unavailable")

    def set(self, key, value, ttl_seconds):
        raise ConnectionError("store unavailable")

    def increment(self, key, ttl_seconds, delta=1):
        raise ConnectionError("store unavailable")

    def delete(self, key):
        raise ConnectionError("store unavailable")


@pytest.fixture
def cache_store():
    cache = caches["default"]
    cache.clear()
    yield CacheCounterStore(cache)
    cache.clear()


def test_third_call_rejected_and_window_expiry_resets():
    clock = _FakeClock()
    limiter = RateLimiter(MemoryCounterStore(clock=clock))

    assert limiter.allow("client", limit=2) is True
    assert limiter.allow("client", limit=2) is True
    assert limiter.allow("client", limit=2) is False

    clock.now += 61
    assert limiter.allow("client", limit=2) is True


def test_cache_store_window(cache_store):
    limiter = RateLimiter(cache_store)

    results = [limiter.allow("client", limit=2) for _ in range(3)]

    assert results == [True, True, False]
    window = limiter.window("client", limit=2)
    assert window.count == 3
    assert window.remaining == 0
    assert window.window_start is not None


def test_clients_are_counted_separately():
    limiter = RateLimiter(MemoryCounterStore())

    assert limiter.allow("a", limit=1) is True
    assert limiter.allow("b", limit=1) is True
    assert limiter.allow("a", limit=1) is False


def test_memory_store_sweeps_expired_clients_on_write():
    clock = _FakeClock()
    store = MemoryCounterStore(clock=clock, sweep_interval=60)
    limiter = RateLimiter(store)

    for i in range(100):
        limiter.allow("client-%d" % i, limit=5)
    # One counter and one window-start entry per client
    assert store.size() == 200

    clock.now += 61
    limiter.allow("newcomer", limit=5)

    assert store.size() == 2


def test_reset_clears_window():
    limiter = RateLimiter(MemoryCounterStore())
    limiter.allow("client", limit=1)

    limiter.reset("client")

    assert limiter.allow("client", limit=1) is True


@pytest.mark.parametrize("store_factory", ["memory", "cache"])
def test_parallel_calls_never_exceed_limit(store_factory, cache_store):
    store = MemoryCounterStore() if store_factory == "memory" else cache_store
    limiter = RateLimiter(store)
    limit, workers = 10, 40
    results = []
    results_lock = threading.Lock()
    barrier = threading.Barrier(workers)

    def call():
        barrier.wait()
        allowed = limiter.allow("shared-client", limit=limit)
        with results_lock:
            results.append(allowed)

    threads = [threading.Thread(target=call) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == workers
    assert results.count(True) == limit


def test_store_failure_fails_open(caplog):
    limiter = RateLimiter(_BrokenStore())

    with caplog.at_level("WARNING", logger="query_shield.rate_limiting"):
        assert limiter.allow("client", limit=0) is True

    assert "Rate limit store error" in caplog.text


def test_allow_requires_config_or_limit():
    with pytest.raises(ValueError):
        RateLimiter(MemoryCounterStore()).allow("client")


def test_limit_selection_uses_burst_for_headless_and_build_tools():
    limiter = RateLimiter(MemoryCounterStore())
    standard = EffectiveConfig()
    headless = EffectiveConfig(headless_mode=True)

    assert limiter.limit_for(standard, "Mozilla/5.0 (X11; Linux x86_64)") == 160
    assert limiter.limit_for(standard, "Next.js Middleware") == 240
    assert limiter.limit_for(headless, None) == 330


def test_build_process_detection():
    assert is_likely_build_process("gatsby-source-graphql") is True
    assert is_likely_build_process("node-fetch/2.6") is True
    assert is_likely_build_process("Mozilla/5.0 (Macintosh)") is False
    assert is_likely_build_process(None) is False


def test_client_key_is_stable_hash():
    assert client_key("8.8.8.8") == client_key("8.8.8.8")
    assert client_key("8.8.8.8") != client_key("8.8.4.4")
    assert len(client_key("8.8.8.8")) == 32


def test_client_ip_prefers_first_public_proxy_address():
    request = RequestFactory().get(
        "/graphql",
        HTTP_X_FORWARDED_FOR="10.0.0.1, 8.8.8.8",
        REMOTE_ADDR="127.0.0.1",
    )

    assert get_client_ip(request) == "8.8.8.8"


def test_client_ip_falls_back_to_remote_addr():
    request = RequestFactory().get("/graphql", REMOTE_ADDR="192.168.1.20")

    assert get_client_ip(request) == "192.168.1.20"
