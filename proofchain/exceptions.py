# proofchain/exceptions.py
from typing import Optional


class ProofChainError(Exception):
    """Base class for every failure kind the issuance workflow reports."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidRequest(ProofChainError):
    kind = "InvalidRequest"
    status_code = 400


class LedgerUnavailable(ProofChainError):
    kind = "LedgerUnavailable"
    status_code = 503


class SigningError(ProofChainError):
    kind = "SigningError"
    status_code = 500


class BroadcastRejected(ProofChainError):
    """
    The node took the call but gave back no usable transaction id, or the call
    was cut off mid-flight. The on-chain state is unknown unless `definite` is
    set, which means the node refused the transaction or it reverted.
    """

    kind = "BroadcastRejected"
    status_code = 502

    def __init__(self, message: str = "", tx_id: Optional[str] = None, definite: bool = False):
        super().__init__(message)
        self.tx_id = tx_id
        self.definite = definite


class DuplicateHash(ProofChainError):
    kind = "DuplicateHash"
    status_code = 409


class StoreUnavailable(ProofChainError):
    kind = "StoreUnavailable"
    status_code = 503


class NotFound(ProofChainError):
    kind = "NotFound"
    status_code = 404
