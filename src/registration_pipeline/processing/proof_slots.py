"""
Слоты подтверждений.

Каждый слот описывает один файл из задачи: в какую подпапку он едет,
как называется и в какую колонку registrations пишется постоянная ссылка.
Порядок слотов = порядок URL в строке таблицы.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from enum import Enum

from registration_pipeline.contracts.queue_events import (
    PROOF_INSTAGRAM,
    PROOF_PAYMENT,
    PROOF_TIKTOK,
)


class ProofFolder(str, Enum):
    payment = "payment"
    social = "social"


@dataclass(frozen=True)
class ProofSlot:
    kind: str
    folder: ProofFolder
    filename_prefix: str
    db_column: str
    use_full_name: bool = False


DEFAULT_PROOF_SLOTS: tuple[ProofSlot, ...] = (
    ProofSlot(
        kind=PROOF_PAYMENT,
        folder=ProofFolder.payment,
        filename_prefix="payment",
        db_column="payment_proof_url",
        use_full_name=True,
    ),
    ProofSlot(
        kind=PROOF_TIKTOK,
        folder=ProofFolder.social,
        filename_prefix="tiktok",
        db_column="tiktok_proof_url",
    ),
    ProofSlot(
        kind=PROOF_INSTAGRAM,
        folder=ProofFolder.social,
        filename_prefix="instagram",
        db_column="instagram_proof_url",
    ),
)


def guess_mime_type(filename: str, default: str = "image/jpeg") -> str:
    mime, _ = mimetypes.guess_type(filename)
    return mime or default
