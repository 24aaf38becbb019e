# proofchain/verification.py
from .exceptions import NotFound
from .models import Certificate


class VerificationService:
    """Read-only lookup of issued certificates. Trusts the stored record, never the chain."""

    def __init__(self, store):
        self.store = store

    def verify(self, certificate_hash: str) -> Certificate:
        cert = self.store.find_by_hash(certificate_hash)
        if cert is None:
            raise NotFound("Certificate not found")
        return cert
