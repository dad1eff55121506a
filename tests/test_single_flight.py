from redis.exceptions import LockError

from conftest import FakeRedis
from utils.single_flight import single_flight


def test_lock_is_released_after_sweep():
    redis_conn = FakeRedis()

    with single_flight(redis_conn, "recurring-payments", timeout=60) as acquired:
        assert acquired
        assert redis_conn.held == {"payments:sweep:recurring-payments"}

    assert redis_conn.held == set()
    assert redis_conn.lock_requests == [("payments:sweep:recurring-payments", 60)]


def test_second_caller_is_told_to_skip():
    redis_conn = FakeRedis()

    with single_flight(redis_conn, "recurring-payments") as first:
        with single_flight(redis_conn, "recurring-payments") as second:
            assert first
            assert not second
        assert redis_conn.held == {"payments:sweep:recurring-payments"}


def test_expired_lock_on_release_is_logged(monkeypatch):
    redis_conn = FakeRedis()

    class ExpiringLock:
        def acquire(self, blocking=True):
            return True

        def release(self):
            raise LockError("Cannot release an unlocked lock")

    monkeypatch.setattr(redis_conn, "lock", lambda name, timeout=None: ExpiringLock())

    with single_flight(redis_conn, "confirmation-monitor") as acquired:
        assert acquired
