from __future__ import annotations

from live_transcription_agent.streaming.backoff import RestartBackoff


def test_delays_double_and_cap() -> None:
    b = RestartBackoff(initial_sec=0.5, max_sec=3.0, max_attempts=6)
    assert [b.next_delay() for _ in range(6)] == [0.5, 1.0, 2.0, 3.0, 3.0, 3.0]
    assert b.exhausted
    assert b.next_delay() is None


def test_reset_starts_over() -> None:
    b = RestartBackoff(initial_sec=1.0, max_sec=10.0, max_attempts=2)
    b.next_delay()
    b.next_delay()
    assert b.exhausted
    b.reset()
    assert b.attempts == 0
    assert b.next_delay() == 1.0
