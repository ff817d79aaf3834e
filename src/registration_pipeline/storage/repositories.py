"""
Репозитории (DAO слой).

Правила:
- Никакой бизнес-логики
- Только CRUD и запросы
"""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import EventSetting, Registration


# =============================================================================
# REGISTRATION REPOSITORY
# =============================================================================
class RegistrationRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, registration_id: int) -> Registration | None:
        return self.session.get(Registration, registration_id)

    def count(self) -> int:
        return int(self.session.scalar(select(func.count()).select_from(Registration)) or 0)

    def set_proof_urls(self, registration_id: int, urls: dict[str, str]) -> int:
        """
        Одна запись UPDATE для всех URL подтверждений.
        urls: {имя_колонки: url}. Возвращает число затронутых строк.
        """
        allowed = {c.name for c in Registration.__table__.columns if c.name.endswith("_proof_url")}
        values = {k: v for k, v in urls.items() if k in allowed}
        unknown = set(urls) - allowed
        if unknown:
            raise ValueError(f"unknown proof url columns: {sorted(unknown)}")
        if not values:
            return 0
        result = self.session.execute(
            update(Registration).where(Registration.id == registration_id).values(**values)
        )
        return int(result.rowcount or 0)


# =============================================================================
# EVENT SETTINGS REPOSITORY
# =============================================================================
class EventSettingRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: str) -> str | None:
        return self.session.scalar(select(EventSetting.value).where(EventSetting.key == key).limit(1))

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        try:
            return int(str(raw).strip()) if raw is not None else default
        except ValueError:
            return default
