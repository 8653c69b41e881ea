from partner_backend.utils.backoff import attempts_exhausted, compute_backoff_seconds


def test_backoff_growth_and_cap():
    first = compute_backoff_seconds(1, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    second = compute_backoff_seconds(2, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    third = compute_backoff_seconds(3, base=1, factor=2, max_seconds=10, jitter_pct=0.0)
    assert first == 1
    assert second == 2
    assert third == 4
    capped = compute_backoff_seconds(10, base=1, factor=2, max_seconds=5, jitter_pct=0.0)
    assert capped <= 5


def test_backoff_jitter_stays_within_spread():
    for _ in range(50):
        delay = compute_backoff_seconds(2, base=2, factor=2, max_seconds=120, jitter_pct=0.1)
        assert 3.6 <= delay <= 4.4


def test_backoff_treats_attempt_zero_as_first():
    assert compute_backoff_seconds(0, base=3, factor=2, max_seconds=60, jitter_pct=0.0) == 3


def test_attempts_exhausted_at_limit():
    assert attempts_exhausted(1, 3) is False
    assert attempts_exhausted(2, 3) is False
    assert attempts_exhausted(3, 3) is True
    assert attempts_exhausted(4, 3) is True
