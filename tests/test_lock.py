"""Tests for the TTL job lock."""

from sqlalchemy import Engine

from budgeting.lock import JobLock


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_second_acquire_is_refused_while_held(db_engine: Engine) -> None:
    first = JobLock(db_engine, "job")
    second = JobLock(db_engine, "job")

    token = first.acquire()

    assert token is not None
    assert second.acquire() is None
    assert first.is_held()


def test_release_frees_the_lock(db_engine: Engine) -> None:
    lock = JobLock(db_engine, "job")
    token = lock.acquire()
    assert token is not None

    assert lock.release(token) is True
    assert not lock.is_held()
    assert lock.acquire() is not None


def test_locks_are_independent_by_name(db_engine: Engine) -> None:
    assert JobLock(db_engine, "a").acquire() is not None
    assert JobLock(db_engine, "b").acquire() is not None


def test_stale_lock_expires_after_ttl(db_engine: Engine) -> None:
    clock = _Clock()
    crashed = JobLock(db_engine, "job", ttl_seconds=300, clock=clock)
    assert crashed.acquire() is not None

    clock.now += 299
    assert JobLock(db_engine, "job", ttl_seconds=300, clock=clock).acquire() is None

    clock.now += 1
    assert JobLock(db_engine, "job", ttl_seconds=300, clock=clock).acquire() is not None


def test_release_with_stale_token_does_not_steal(db_engine: Engine) -> None:
    clock = _Clock()
    old = JobLock(db_engine, "job", ttl_seconds=10, clock=clock)
    old_token = old.acquire()
    assert old_token is not None

    clock.now += 11
    new = JobLock(db_engine, "job", ttl_seconds=10, clock=clock)
    assert new.acquire() is not None

    assert old.release(old_token) is False
    assert new.is_held()
