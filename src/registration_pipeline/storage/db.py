"""
Инициализация базы данных и сессий SQLAlchemy.

Назначение:
- создание engine по DATABASE_URL
- контекстный менеджер для сессий
- единая точка доступа к БД для процессора
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


# =============================================================================
# ENGINE / SESSION FACTORY
# =============================================================================
def normalize_dsn(dsn: str) -> str:
    """
    postgres://... (формат Supabase/Heroku) -> postgresql+psycopg://...
    """
    if dsn.startswith("postgres://"):
        return "postgresql+psycopg://" + dsn[len("postgres://") :]
    if dsn.startswith("postgresql://"):
        return "postgresql+psycopg://" + dsn[len("postgresql://") :]
    return dsn


def create_db_engine(dsn: str) -> Engine:
    if dsn.startswith("sqlite"):
        # тесты: одна in-memory БД на все потоки
        return create_engine(
            dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    # один воркер = одно соединение
    return create_engine(
        normalize_dsn(dsn),
        pool_pre_ping=True,
        pool_size=1,
        max_overflow=1,
        pool_recycle=300,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================================
# CONTEXT MANAGER
# =============================================================================
@contextmanager
def db_session(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    Контекстный менеджер для работы с БД.

    Использование:
        with db_session(factory) as session:
            session.add(...)
    """
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
