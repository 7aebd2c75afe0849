"""Tests for the in-memory session store: issue, resolve, expiry, pruning."""

import threading

from readersync.auth.sessions import TOKEN_BYTES, SessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_issue_returns_hex_token_and_expiry():
    """Token is 256 bits hex encoded; expiry is now + ttl."""
    clock = FakeClock()
    store = SessionStore(clock=clock)
    token, expires_at = store.issue("alice", "kobo", 60)
    assert len(token) == TOKEN_BYTES * 2
    int(token, 16)
    assert expires_at == 1060.0


def test_resolve_live_token():
    store = SessionStore(clock=FakeClock())
    token, _ = store.issue("alice", "", 60)
    assert store.resolve(token) == "alice"


def test_resolve_unknown_or_empty_token():
    store = SessionStore(clock=FakeClock())
    assert store.resolve("deadbeef") is None
    assert store.resolve("") is None
    assert store.resolve(None) is None


def test_tokens_are_unique_per_login():
    store = SessionStore(clock=FakeClock())
    t1, _ = store.issue("alice", "a", 60)
    t2, _ = store.issue("alice", "b", 60)
    assert t1 != t2
    assert store.resolve(t1) == "alice"
    assert store.resolve(t2) == "alice"


def test_expired_token_is_dropped_on_resolve():
    """Resolving an expired token returns None and removes the entry."""
    clock = FakeClock()
    store = SessionStore(clock=clock)
    token, _ = store.issue("alice", "", 60)
    clock.now += 60
    assert store.resolve(token) is None
    assert len(store) == 0


def test_issue_prunes_expired_sessions():
    clock = FakeClock()
    store = SessionStore(clock=clock)
    store.issue("alice", "", 10)
    store.issue("bob", "", 10)
    clock.now += 11
    store.issue("carol", "", 10)
    assert len(store) == 1


def test_sweep_removes_only_expired():
    clock = FakeClock()
    store = SessionStore(clock=clock)
    short, _ = store.issue("alice", "", 10)
    long_, _ = store.issue("bob", "", 100)
    clock.now += 50
    assert store.sweep() == 1
    assert store.resolve(short) is None
    assert store.resolve(long_) == "bob"


def test_concurrent_issue_and_resolve():
    """Many threads issuing and resolving never lose a session."""
    store = SessionStore()
    tokens = []
    lock = threading.Lock()

    def worker(n: int) -> None:
        for i in range(50):
            token, _ = store.issue(f"user{n}", "", 3600)
            assert store.resolve(token) == f"user{n}"
            with lock:
                tokens.append(token)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(store) == 400
    assert len(set(tokens)) == 400
