"""
ORM-модели базы данных.

Назначение:
- регистрации участников (таблица создаётся и заполняется intake-ботом)
- key/value настройки события (event_settings, правит админ-бот)

Воркер читает обе таблицы и пишет только URL подтверждений.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# REGISTRATION
# =============================================================================
class Registration(Base):
    """
    Регистрация участника.
    """

    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    registration_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    instagram_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    participation_history: Mapped[str | None] = mapped_column(String(32), nullable=True)
    vest_size: Mapped[str | None] = mapped_column(String(16), nullable=True)

    telegram_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Постоянные ссылки (Google Drive), проставляются воркером
    payment_proof_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    tiktok_proof_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    instagram_proof_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def first_name(self) -> str:
        parts = (self.name or "").strip().split()
        return parts[0] if parts else ""

    @property
    def participation_label(self) -> str:
        return "Sudah Pernah" if self.participation_history == "yes" else "Belum Pernah"


# =============================================================================
# EVENT SETTINGS
# =============================================================================
class EventSetting(Base):
    """
    Настройка события (key/value).
    """

    __tablename__ = "event_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, default="", nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
