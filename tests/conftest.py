from __future__ import annotations

from collections import defaultdict

import pytest

from registration_pipeline.queue.store import QueueStore


class FakeRedis:
    """
    In-memory замена redis.Redis для list-операций очереди.
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.blpop_calls = 0
        self.blpop_error: Exception | None = None
        self.close_calls = 0
        self.execute_error: Exception | None = None

    def rpush(self, name: str, *values: str) -> int:
        self.lists[name].extend(values)
        return len(self.lists[name])

    def blpop(self, keys, timeout: int = 0):
        self.blpop_calls += 1
        if self.blpop_error is not None:
            raise self.blpop_error
        for key in keys:
            if self.lists.get(key):
                return key, self.lists[key].pop(0)
        return None

    def lpop(self, name: str):
        items = self.lists.get(name)
        if not items:
            return None
        return items.pop(0)

    def lindex(self, name: str, index: int):
        items = self.lists.get(name, [])
        return items[index] if -len(items) <= index < len(items) else None

    def lmove(self, src: str, dst: str, wherefrom: str = "LEFT", whereto: str = "RIGHT"):
        items = self.lists.get(src)
        if not items:
            return None
        value = items.pop(0) if wherefrom == "LEFT" else items.pop()
        if whereto == "LEFT":
            self.lists[dst].insert(0, value)
        else:
            self.lists[dst].append(value)
        return value

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def lrange(self, name: str, start: int, end: int) -> list[str]:
        items = self.lists.get(name, [])
        return list(items[start : None if end == -1 else end + 1])

    def llen(self, name: str) -> int:
        return len(self.lists.get(name, []))

    def delete(self, *names: str) -> int:
        n = 0
        for name in names:
            if self.lists.pop(name, None) is not None:
                n += 1
        return n

    def close(self) -> None:
        self.close_calls += 1


class FakePipeline:
    """
    MULTI/EXEC: команды копятся и применяются разом в execute().
    execute_error имитирует обрыв до EXEC (ничего не применено).
    """

    def __init__(self, client: FakeRedis) -> None:
        self.client = client
        self.commands: list[tuple[str, tuple]] = []

    def lpop(self, name: str) -> FakePipeline:
        self.commands.append(("lpop", (name,)))
        return self

    def rpush(self, name: str, *values: str) -> FakePipeline:
        self.commands.append(("rpush", (name, *values)))
        return self

    def execute(self) -> list:
        if self.client.execute_error is not None:
            raise self.client.execute_error
        return [getattr(self.client, cmd)(*args) for cmd, args in self.commands]


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> QueueStore:
    return QueueStore(client=fake_redis, queue_name="q:registrations")


def _make_job_payload(**overrides) -> dict:
    payload = {
        "id": "job-1",
        "registrationId": 42,
        "files": {
            "paymentProof": {
                "url": "https://x.supabase.co/storage/v1/object/public/registrations/42/pay.jpg",
                "filename": "pay.jpg",
            },
            "tiktokProof": {
                "url": "https://x.supabase.co/storage/v1/object/public/registrations/42/tt.png",
                "filename": "tt.png",
            },
            "instagramProof": {
                "url": "https://x.supabase.co/storage/v1/object/public/registrations/42/ig.jpeg",
                "filename": "ig.jpeg",
            },
        },
        "eventTitle": "Aksi Bersih Pantai Nasional",
        "eventDate": "20 Januari 2025",
        "timestamp": 1737331200000,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_payload():
    return _make_job_payload
