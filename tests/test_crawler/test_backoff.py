"""Tests for exponential retry backoff."""

from src.crawler.backoff import ExponentialBackoff


class TestExponentialBackoff:
    """Tests for ExponentialBackoff delay calculation."""

    def test_first_delay_is_base(self):
        backoff = ExponentialBackoff(base_delay=2.0, max_delay=30.0, jitter_range=0.0)
        assert backoff.next_delay() == 2.0

    def test_delay_doubles_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=2.0, max_delay=60.0, jitter_range=0.0)
        assert [backoff.next_delay() for _ in range(3)] == [2.0, 4.0, 8.0]

    def test_caps_at_max_delay(self):
        backoff = ExponentialBackoff(base_delay=10.0, max_delay=30.0, jitter_range=0.0)
        delays = [backoff.next_delay() for _ in range(4)]
        assert delays[-1] == 30.0

    def test_jitter_stays_within_range(self):
        backoff = ExponentialBackoff(base_delay=10.0, max_delay=10.0, jitter_range=0.1)
        for _ in range(50):
            assert 9.0 <= backoff.next_delay() <= 11.0

    def test_zero_base_never_sleeps(self):
        backoff = ExponentialBackoff(base_delay=0.0)
        assert backoff.next_delay() == 0.0

    def test_attempt_counter_increments(self):
        backoff = ExponentialBackoff()
        assert backoff.attempt == 0
        backoff.next_delay()
        backoff.next_delay()
        assert backoff.attempt == 2

    def test_delay_for_does_not_advance(self):
        backoff = ExponentialBackoff(base_delay=1.5, max_delay=100.0)
        assert backoff.delay_for(3) == 12.0
        assert backoff.attempt == 0
