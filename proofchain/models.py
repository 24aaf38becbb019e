# proofchain/models.py
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Certificate(SQLModel, table=True):
    __tablename__ = "certificates"

    id: Optional[int] = Field(default=None, primary_key=True)
    student_name: str
    course: str
    certificate_hash: str = Field(index=True, unique=True)
    tx_id: str
    created_at: datetime = Field(default_factory=_utcnow)
