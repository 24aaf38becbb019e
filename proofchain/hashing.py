# proofchain/hashing.py
import hashlib
from datetime import datetime, timezone
from typing import Union

from .exceptions import InvalidRequest

SEPARATOR = "-"


def issued_at_millis(issued_at: Union[datetime, int]) -> int:
    """Milliseconds since the Unix epoch. Naive datetimes are read as UTC."""
    if isinstance(issued_at, datetime):
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        return int(issued_at.timestamp() * 1000)
    return int(issued_at)


def derive(student_name: str, course: str, issued_at: Union[datetime, int]) -> str:
    """
    Fingerprint of a certificate request:
      sha256(utf8("{student_name}-{course}-{issued_at_millis}")).hexdigest()
    Returns 64 lowercase hex chars.
    """
    if not student_name or not student_name.strip() or not course or not course.strip():
        raise InvalidRequest("Student name and course required")

    data = SEPARATOR.join([student_name, course, str(issued_at_millis(issued_at))])
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
