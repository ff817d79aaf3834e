from __future__ import annotations

import json
import threading
from types import SimpleNamespace

import pytest
import redis

from registration_pipeline.common.errors import RegistrationNotFoundError
from registration_pipeline.contracts.queue_events import RegistrationJob
from registration_pipeline.worker.loop import IterationResult, RegistrationWorker, WorkerState


def _worker(store, process, slept: list[float], **kwargs) -> RegistrationWorker:
    return RegistrationWorker(
        store=store,
        processor=SimpleNamespace(process=process),
        sleep=slept.append,
        **kwargs,
    )


def _enqueue(store, make_payload, **overrides) -> None:
    store.enqueue(RegistrationJob.model_validate(make_payload(**overrides)))


def test_idle_when_queue_empty(store) -> None:
    slept: list[float] = []
    worker = _worker(store, lambda job: None, slept)
    assert worker.run_once() is IterationResult.idle
    assert slept == []


def test_success_has_no_cooldown(store, make_payload) -> None:
    seen: list[str] = []
    slept: list[float] = []
    _enqueue(store, make_payload)
    worker = _worker(store, lambda job: seen.append(job.id), slept)

    assert worker.run_once() is IterationResult.success
    assert seen == ["job-1"]
    assert slept == []
    assert store.failed_depth() == 0


def test_missing_registration_goes_to_dlq_once(store, fake_redis, make_payload) -> None:
    def _process(job):
        raise RegistrationNotFoundError(job.registration_id)

    slept: list[float] = []
    _enqueue(store, make_payload, registrationId=999)
    worker = _worker(store, _process, slept)

    assert worker.run_once() is IterationResult.failed
    assert worker.run_once() is IterationResult.idle

    assert store.queue_depth() == 0
    (record,) = store.list_failed(10)
    assert record["registrationId"] == 999
    assert record["error"]["message"] == "Registration 999 not found in database"
    assert slept == [5.0]


def test_invalid_payload_is_dead_lettered_raw(store, fake_redis) -> None:
    fake_redis.rpush("q:registrations", json.dumps({"id": "x"}))
    slept: list[float] = []
    worker = _worker(store, lambda job: None, slept, failure_cooldown_sec=1.5)

    assert worker.run_once() is IterationResult.invalid
    (record,) = store.list_failed(10)
    assert json.loads(record["raw"]) == {"id": "x"}
    assert slept == [1.5]


def test_job_deadline_moves_job_to_dlq(store, make_payload) -> None:
    release = threading.Event()
    slept: list[float] = []
    _enqueue(store, make_payload)
    worker = _worker(store, lambda job: release.wait(5), slept, job_timeout_sec=0.05)
    try:
        assert worker.run_once() is IterationResult.failed
    finally:
        release.set()

    (record,) = store.list_failed(10)
    assert "exceeded deadline" in record["error"]["message"]
    assert slept == [5.0]


def test_store_errors_escalate_after_threshold(store, fake_redis) -> None:
    fake_redis.blpop_error = redis.ConnectionError("Connection refused")
    slept: list[float] = []
    worker = _worker(store, lambda job: None, slept, max_consecutive_store_errors=3)

    assert worker.run_once() is IterationResult.store_error
    assert worker.run_once() is IterationResult.store_error
    with pytest.raises(redis.ConnectionError):
        worker.run_once()
    assert slept == [5.0, 5.0]


def test_store_error_counter_resets_after_success(store, fake_redis) -> None:
    slept: list[float] = []
    worker = _worker(store, lambda job: None, slept, max_consecutive_store_errors=2)

    fake_redis.blpop_error = redis.ConnectionError("Connection refused")
    assert worker.run_once() is IterationResult.store_error
    fake_redis.blpop_error = None
    assert worker.run_once() is IterationResult.idle
    fake_redis.blpop_error = redis.ConnectionError("Connection refused")
    assert worker.run_once() is IterationResult.store_error


def test_shutdown_finishes_current_job_and_closes_once(store, fake_redis, make_payload) -> None:
    _enqueue(store, make_payload, id="a")
    _enqueue(store, make_payload, id="b")
    slept: list[float] = []
    processed: list[str] = []
    worker: RegistrationWorker | None = None

    def _process(job):
        processed.append(job.id)
        worker.request_shutdown("SIGTERM")

    worker = _worker(store, _process, slept)
    worker.run()

    assert processed == ["a"]
    assert worker.state is WorkerState.shutting_down
    assert len(fake_redis.lists["q:registrations"]) == 1
    assert fake_redis.blpop_calls == 1
    worker.close()
    assert fake_redis.close_calls == 1


def test_run_propagates_fatal_store_error_and_closes(store, fake_redis) -> None:
    fake_redis.blpop_error = redis.ConnectionError("Connection refused")
    slept: list[float] = []
    worker = _worker(store, lambda job: None, slept, max_consecutive_store_errors=2)

    with pytest.raises(redis.ConnectionError):
        worker.run()
    assert fake_redis.close_calls == 1


def test_shutdown_skips_cooldown(store, fake_redis, make_payload) -> None:
    slept: list[float] = []
    worker: RegistrationWorker | None = None

    def _process(job):
        worker.request_shutdown("SIGINT")
        raise RuntimeError("drive down")

    _enqueue(store, make_payload)
    worker = _worker(store, _process, slept)
    worker.run()

    assert len(fake_redis.lists["q:registrations:dlq"]) == 1
    assert slept == []
    with pytest.raises(RuntimeError, match="closed"):
        store.queue_depth()
