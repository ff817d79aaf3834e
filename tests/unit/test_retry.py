from __future__ import annotations

import pytest

from registration_pipeline.queue.retry import backoff_delay, call_with_backoff


def test_backoff_delay_doubles() -> None:
    assert [backoff_delay(n, 1.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]
    assert backoff_delay(2, 0.5) == 1.0


def test_call_with_backoff_succeeds_on_third_attempt() -> None:
    slept: list[float] = []
    calls: list[int] = []

    def _fn(attempt: int) -> str:
        calls.append(attempt)
        if attempt < 3:
            raise RuntimeError("boom")
        return "ok"

    result, outcome = call_with_backoff(_fn, max_attempts=3, sleep=slept.append)
    assert result == "ok"
    assert outcome.ok is True
    assert outcome.attempts == 3
    assert calls == [1, 2, 3]
    assert slept == [1.0, 2.0]


def test_call_with_backoff_exhausted_does_not_raise() -> None:
    slept: list[float] = []

    def _fn(attempt: int) -> None:
        raise RuntimeError(f"fail {attempt}")

    result, outcome = call_with_backoff(_fn, max_attempts=3, sleep=slept.append)
    assert result is None
    assert outcome.ok is False
    assert outcome.attempts == 3
    assert outcome.last_error == "fail 3"
    assert slept == [1.0, 2.0]


@pytest.mark.parametrize("max_attempts", [0, 1])
def test_call_with_backoff_runs_at_least_once(max_attempts: int) -> None:
    slept: list[float] = []
    result, outcome = call_with_backoff(
        lambda attempt: attempt, max_attempts=max_attempts, sleep=slept.append
    )
    assert result == 1
    assert outcome.ok is True
    assert slept == []
