from datetime import timedelta

import pytest

from utils.retry_policy import RetryPolicy, next_retry_delay


def test_delays_double_until_attempts_are_exhausted():
    assert next_retry_delay(1) == timedelta(seconds=5)
    assert next_retry_delay(2) == timedelta(seconds=10)
    assert next_retry_delay(3) is None
    assert next_retry_delay(4) is None


def test_custom_base_and_attempts():
    assert next_retry_delay(3, max_attempts=5, base_delay=2) == timedelta(seconds=8)
    assert next_retry_delay(5, max_attempts=5, base_delay=2) is None


def test_attempt_must_be_one_based():
    with pytest.raises(ValueError):
        next_retry_delay(0)


def test_policy_matches_rq_retry_shape():
    policy = RetryPolicy()

    assert policy.max_retries == 2
    assert policy.intervals() == [5, 10]


def test_single_attempt_policy_never_retries():
    policy = RetryPolicy(max_attempts=1)

    assert policy.max_retries == 0
    assert policy.intervals() == []
    assert policy.next_delay(1) is None


@pytest.mark.parametrize("retries_left, attempt", [(None, 1), (2, 1), (1, 2), (0, 3), (5, 1)])
def test_attempt_number_from_remaining_retries(retries_left, attempt):
    assert RetryPolicy().attempt_number(retries_left) == attempt
