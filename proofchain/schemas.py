# proofchain/schemas.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class MintIn(BaseModel):
    # left optional so an empty or missing field reaches the hash deriver
    # and comes back as the usual 400 instead of a 422
    studentName: Optional[str] = None
    course: Optional[str] = None


class MintOut(BaseModel):
    success: bool = True
    txId: str
    certificateHash: str


class ReconcileIn(BaseModel):
    studentName: str
    course: str
    issuedAt: int
    certificateHash: str
    txId: str


class CertificateOut(BaseModel):
    id: int
    studentName: str
    course: str
    certificateHash: str
    txId: str
    createdAt: datetime

    @classmethod
    def from_record(cls, cert) -> "CertificateOut":
        return cls(
            id=cert.id,
            studentName=cert.student_name,
            course=cert.course,
            certificateHash=cert.certificate_hash,
            txId=cert.tx_id,
            createdAt=cert.created_at,
        )


class VerifyOut(BaseModel):
    success: bool = True
    certificate: CertificateOut


class HealthOut(BaseModel):
    status: str
    storeConnected: bool
    issuer: str
