# utils/single_flight.py
from contextlib import contextmanager

from redis.exceptions import LockError

from utils.logging_utils import get_logger

logger = get_logger("single_flight")


@contextmanager
def single_flight(redis_conn, name, timeout=3600):
    """
    Non-blocking Redis lock around one sweep. Yields whether this caller holds it;
    a caller that does not must skip the sweep.
    """
    lock = redis_conn.lock(f"payments:sweep:{name}", timeout=timeout)
    acquired = lock.acquire(blocking=False)
    if not acquired:
        logger.warning(f"Sweep '{name}' already running elsewhere, skipping")
    try:
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except LockError as e:
                # lock expired before the sweep finished
                logger.error(f"Sweep '{name}' lock lost before release: {e}")
