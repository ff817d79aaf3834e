"""
Redis-клиент для очереди регистраций.

Назначение:
- единая точка подключения к Redis
- используется QueueStore, воркером и инструментами DLQ
"""

from __future__ import annotations

import redis


def create_redis_client(redis_url: str, *, socket_timeout_sec: float | None = None) -> redis.Redis:
    """
    Новый клиент. Подключение ленивое: первый запрос откроет соединение.

    socket_timeout должен быть больше таймаута BLPOP, иначе блокирующий
    вызов упадёт с TimeoutError раньше, чем Redis вернёт пустой ответ.
    """
    return redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=socket_timeout_sec,
        socket_connect_timeout=10,
        health_check_interval=30,
    )
