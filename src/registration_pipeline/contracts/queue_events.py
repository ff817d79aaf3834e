"""
Контракты задач очереди регистраций (Pydantic-модели).

Важно:
- payload всегда JSON, поля в camelCase (как пишет intake-бот)
- schema_version необязателен на входе (старые payload'ы = v1)
- неизвестные поля верхнего уровня запрещены: такой payload уходит в DLQ
"""

from __future__ import annotations

import json
import traceback
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from registration_pipeline.common.errors import AppError, InvalidJobPayloadError
from registration_pipeline.common.time import utc_now_iso

from .versions import QUEUE_SCHEMA_VERSION

SchemaV1 = Literal[QUEUE_SCHEMA_VERSION]

# Виды подтверждений, которые присылает intake-бот
PROOF_PAYMENT = "paymentProof"
PROOF_TIKTOK = "tiktokProof"
PROOF_INSTAGRAM = "instagramProof"


class ProofFile(BaseModel):
    url: str = Field(min_length=1)
    filename: str = Field(min_length=1)

    @property
    def extension(self) -> str:
        name = self.filename.rsplit("/", 1)[-1]
        if "." not in name:
            return "jpg"
        return name.rsplit(".", 1)[-1].lower() or "jpg"


class RegistrationJob(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    schema_version: SchemaV1 = Field(default=QUEUE_SCHEMA_VERSION, alias="schemaVersion")
    id: str
    registration_id: int = Field(alias="registrationId")
    files: dict[str, ProofFile]
    event_title: str = Field(alias="eventTitle")
    event_date: str = Field(alias="eventDate")
    timestamp: int | str

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> RegistrationJob:
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidJobPayloadError("Job payload is not valid JSON", raw=raw) from e
        if not isinstance(data, dict):
            raise InvalidJobPayloadError("Job payload must be a JSON object", raw=raw)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidJobPayloadError(
                "Job payload does not match schema",
                raw=raw,
                details={"errors": e.errors(include_url=False, include_input=False)},
            ) from e


class JobError(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    stack: str | None = None
    failed_at: str = Field(alias="failedAt")


def build_job_error(exc: BaseException) -> JobError:
    message = exc.message if isinstance(exc, AppError) else str(exc)
    message = message or type(exc).__name__
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)) or None
    return JobError(message=message, stack=stack, failed_at=utc_now_iso())


def build_failed_record(job: RegistrationJob | str, exc: BaseException) -> dict[str, Any]:
    """
    Запись DLQ: поля задачи + error {message, stack?, failedAt}.

    Для невалидного payload поля задачи неизвестны, поэтому исходный
    текст кладётся в raw.
    """
    if isinstance(job, RegistrationJob):
        record: dict[str, Any] = job.to_wire()
    else:
        record = {"raw": job}
    record["error"] = build_job_error(exc).model_dump(by_alias=True, exclude_none=True)
    return record
