"""
Tests for resilience.backoff.BackoffPolicy.
"""

import pytest

from resilience import BackoffPolicy


@pytest.mark.parametrize("attempt", [1, 2, 3, 4])
def test_delay_within_jitter_bounds(attempt: int) -> None:
    """Attempt k lies in [base*2^(k-1), base*2^(k-1)*(1+jitter)]."""
    policy = BackoffPolicy(base_delay_ms=2000, jitter_fraction=0.1, cap_delay_ms=30000)
    low = 2000 * 2 ** (attempt - 1)

    assert policy.delay_ms(attempt, rand=lambda: 0.0) == pytest.approx(low)
    assert policy.delay_ms(attempt, rand=lambda: 0.999999) <= low * 1.1
    assert low <= policy.delay_ms(attempt) <= low * 1.1


def test_delay_is_capped() -> None:
    policy = BackoffPolicy(base_delay_ms=2000, jitter_fraction=0.1, cap_delay_ms=30000)
    # 2000 * 2^4 = 32000 > cap
    assert policy.delay_ms(5, rand=lambda: 0.0) == 30000
    assert policy.delay_ms(50, rand=lambda: 0.5) == 30000


def test_huge_attempt_numbers_saturate_at_cap() -> None:
    policy = BackoffPolicy(base_delay_ms=2000, cap_delay_ms=30000)
    assert policy.delay_ms(5000, rand=lambda: 0.5) == 30000


def test_delays_grow_until_cap() -> None:
    policy = BackoffPolicy(base_delay_ms=100, jitter_fraction=0.1, cap_delay_ms=1000)
    delays = [policy.delay_ms(k, rand=lambda: 0.5) for k in range(1, 6)]
    assert delays == sorted(delays)
    assert delays[-1] == 1000


def test_zero_jitter_is_deterministic() -> None:
    policy = BackoffPolicy(base_delay_ms=250, jitter_fraction=0.0)
    assert policy.delay_ms(3) == 1000


def test_attempt_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BackoffPolicy(base_delay_ms=100).delay_ms(0)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_delay_ms": -1},
        {"base_delay_ms": 100, "jitter_fraction": 1.5},
        {"base_delay_ms": 100, "cap_delay_ms": -5},
    ],
)
def test_invalid_policy_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)
