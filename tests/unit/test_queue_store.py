from __future__ import annotations

import json

import pytest

from registration_pipeline.common.errors import InvalidJobPayloadError, RegistrationNotFoundError
from registration_pipeline.contracts.queue_events import RegistrationJob
from registration_pipeline.queue.dispatcher import enqueue_registration
from registration_pipeline.queue.store import QueueStore, dlq_name


def test_enqueue_then_dequeue_is_fifo(store, fake_redis, make_payload) -> None:
    first = RegistrationJob.model_validate(make_payload(id="a"))
    second = RegistrationJob.model_validate(make_payload(id="b"))
    store.enqueue(first)
    store.enqueue(second)

    assert store.queue_depth() == 2
    assert store.dequeue_blocking(2).id == "a"
    assert store.dequeue_blocking(2).id == "b"
    assert store.queue_depth() == 0


def test_dequeue_timeout_returns_none(store) -> None:
    assert store.dequeue_blocking(1) is None


def test_dequeue_invalid_payload_keeps_raw(store, fake_redis) -> None:
    fake_redis.rpush("q:registrations", "{not json")
    with pytest.raises(InvalidJobPayloadError) as ei:
        store.dequeue_blocking(1)
    assert ei.value.raw == "{not json"
    assert store.queue_depth() == 0


def test_dequeue_rejects_unknown_top_level_field(store, fake_redis, make_payload) -> None:
    fake_redis.rpush("q:registrations", json.dumps(make_payload(extra="x")))
    with pytest.raises(InvalidJobPayloadError):
        store.dequeue_blocking(1)


def test_numeric_job_id_is_coerced(store, fake_redis, make_payload) -> None:
    fake_redis.rpush("q:registrations", json.dumps(make_payload(id=17)))
    job = store.dequeue_blocking(1)
    assert job.id == "17"
    assert job.schema_version == "v1"


def test_move_to_failed_appends_record_with_error(store, fake_redis, make_payload) -> None:
    job = RegistrationJob.model_validate(make_payload())
    for _ in range(3):
        store.move_to_failed(job, RegistrationNotFoundError(42))

    assert store.failed_depth() == 3
    assert store.queue_depth() == 0
    record = json.loads(fake_redis.lists[dlq_name("q:registrations")][0])
    assert record["id"] == "job-1"
    assert record["registrationId"] == 42
    assert record["error"]["message"] == "Registration 42 not found in database"
    assert "failedAt" in record["error"]
    assert "stack" in record["error"]


def test_move_raw_payload_to_failed(store, fake_redis) -> None:
    store.move_to_failed("{not json", InvalidJobPayloadError("bad", raw="{not json"))
    (record,) = store.list_failed(10)
    assert record["raw"] == "{not json"
    assert record["error"]["message"] == "bad"


def test_close_connection_is_idempotent(store, fake_redis) -> None:
    store.dequeue_blocking(1)
    store.close_connection()
    store.close_connection()
    assert fake_redis.close_calls == 1


def test_closed_store_rejects_further_use(store, fake_redis) -> None:
    store.close_connection()
    with pytest.raises(RuntimeError, match="closed"):
        store.queue_depth()
    assert fake_redis.close_calls == 1


def test_closed_url_store_does_not_reconnect() -> None:
    store = QueueStore(redis_url="redis://localhost:6379/0")
    store.close_connection()
    with pytest.raises(RuntimeError, match="closed"):
        store.client


def test_replay_moves_valid_records_back(store, fake_redis, make_payload) -> None:
    job = RegistrationJob.model_validate(make_payload())
    store.move_to_failed(job, RuntimeError("drive down"))
    store.move_to_failed("garbage", RuntimeError("bad"))

    replayed, skipped = store.replay_failed(5)

    assert (replayed, skipped) == (1, 1)
    assert store.queue_depth() == 1
    assert store.failed_depth() == 1
    assert store.dequeue_blocking(1).id == "job-1"


def test_replay_rotates_invalid_record_to_tail(store, fake_redis, make_payload) -> None:
    store.move_to_failed("garbage", RuntimeError("bad"))
    store.move_to_failed(RegistrationJob.model_validate(make_payload()), RuntimeError("x"))

    assert store.replay_failed(1) == (0, 1)
    (head, tail) = store.list_failed(10)
    assert head["id"] == "job-1"
    assert tail["raw"] == "garbage"


def test_interrupted_replay_keeps_record_in_dlq(store, fake_redis, make_payload) -> None:
    store.move_to_failed(RegistrationJob.model_validate(make_payload()), RuntimeError("x"))
    fake_redis.execute_error = ConnectionError("connection lost")

    with pytest.raises(ConnectionError):
        store.replay_failed(1)

    assert store.failed_depth() == 1
    assert store.queue_depth() == 0


def test_purge_failed(store, make_payload) -> None:
    store.move_to_failed("x", RuntimeError("bad"))
    store.move_to_failed("y", RuntimeError("bad"))
    assert store.purge_failed() == 2
    assert store.failed_depth() == 0


def test_enqueue_registration_builds_wire_payload(store, fake_redis) -> None:
    job_id = enqueue_registration(
        store,
        registration_id=7,
        files={"paymentProof": {"url": "https://x/p.jpg", "filename": "p.jpg"}},
        event_title="Run",
        event_date="1 Juni 2025",
    )
    (raw,) = fake_redis.lists["q:registrations"]
    data = json.loads(raw)
    assert data["id"] == job_id
    assert job_id.startswith("reg_")
    assert data["registrationId"] == 7
    assert data["eventTitle"] == "Run"
    assert data["files"]["paymentProof"]["filename"] == "p.jpg"


def test_store_requires_url_or_client() -> None:
    with pytest.raises(ValueError):
        QueueStore()
