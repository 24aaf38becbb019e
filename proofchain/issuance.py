# proofchain/issuance.py
"""
Certificate issuance state machine.

    START -> VALIDATED -> PARAMS_FETCHED -> SIGNED -> BROADCAST -> PERSISTED
      any step may instead end in FAILED(stage, error)

Each state maps to exactly one step; a step returns the next state or raises
a ProofChainError. Nothing is retried here. Once BROADCAST is reached the
asset exists on-chain, so a failure after that point is reported with the
transaction id and `on_chain_committed=True` for manual reconciliation.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Union

from .exceptions import BroadcastRejected, InvalidRequest, ProofChainError
from .hashing import derive, issued_at_millis
from .models import Certificate

log = logging.getLogger(__name__)


class IssuanceState(str, Enum):
    START = "start"
    VALIDATED = "validated"
    PARAMS_FETCHED = "params_fetched"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    PERSISTED = "persisted"
    FAILED = "failed"


class Stage(str, Enum):
    VALIDATION = "validation"
    PARAMS = "params"
    SIGN = "sign"
    BROADCAST = "broadcast"
    PERSIST = "persist"
    RECONCILE = "reconcile"


@dataclass
class IssuanceResult:
    state: IssuanceState
    student_name: Optional[str]
    course: Optional[str]
    issued_at_millis: int
    certificate_hash: Optional[str] = None
    tx_id: Optional[str] = None
    stage: Optional[Stage] = None
    error: Optional[ProofChainError] = None
    record: Optional[Certificate] = None
    history: List[IssuanceState] = field(default_factory=list)
    reconciling: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is IssuanceState.PERSISTED

    @property
    def on_chain_committed(self) -> Optional[bool]:
        """True once an asset exists on-chain, None when that is unknown."""
        if self.succeeded or self.stage is Stage.PERSIST:
            return True
        if self.stage is Stage.RECONCILE:
            # the caller claims a tx we could not check
            return None
        if isinstance(self.error, BroadcastRejected):
            return False if self.error.definite else None
        return False

    @property
    def candidate_tx_id(self) -> Optional[str]:
        """Tx id computed before an ambiguous broadcast, for looking it up by hand."""
        if isinstance(self.error, BroadcastRejected):
            return self.error.tx_id
        return None


@dataclass
class _Issuance:
    student_name: Optional[str]
    course: Optional[str]
    issued_at: Union[datetime, int]
    fingerprint: Optional[str] = None
    params: object = None
    signed: object = None
    tx_id: Optional[str] = None
    record: Optional[Certificate] = None
    history: List[IssuanceState] = field(default_factory=list)
    reconciling: bool = False

    def result(self, state, stage=None, error=None) -> IssuanceResult:
        return IssuanceResult(
            state=state,
            student_name=self.student_name,
            course=self.course,
            issued_at_millis=issued_at_millis(self.issued_at),
            certificate_hash=self.fingerprint,
            tx_id=self.tx_id,
            stage=stage,
            error=error,
            record=self.record,
            history=list(self.history) + [state],
            reconciling=self.reconciling,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssuanceCoordinator:
    def __init__(self, ledger, store, signer, clock: Optional[Callable[[], datetime]] = None):
        self.ledger = ledger
        self.store = store
        self.signer = signer
        self.clock = clock or _utcnow
        self._steps = {
            IssuanceState.START: (Stage.VALIDATION, self._validate),
            IssuanceState.VALIDATED: (Stage.PARAMS, self._fetch_params),
            IssuanceState.PARAMS_FETCHED: (Stage.SIGN, self._sign),
            IssuanceState.SIGNED: (Stage.BROADCAST, self._broadcast),
            IssuanceState.BROADCAST: (Stage.PERSIST, self._persist),
        }

    def issue(self, student_name: Optional[str], course: Optional[str], issued_at=None) -> IssuanceResult:
        ctx = _Issuance(student_name, course, issued_at if issued_at is not None else self.clock())
        return self._run(ctx, IssuanceState.START)

    def reconcile(
        self,
        student_name: Optional[str],
        course: Optional[str],
        issued_at: int,
        certificate_hash: str,
        tx_id: str,
    ) -> IssuanceResult:
        """
        Persist a certificate whose asset was already created on-chain but whose
        record never made it to the store. Checks the request against the hash
        and the hash against the transaction, then re-enters the machine at
        BROADCAST. Never touches the ledger's write side.
        """
        # carry the posted hash and tx so a failed attempt can be resubmitted as-is
        ctx = _Issuance(
            student_name, course, issued_at,
            fingerprint=certificate_hash, tx_id=tx_id, reconciling=True,
        )
        try:
            fingerprint = derive(student_name, course, issued_at)
            if fingerprint != certificate_hash:
                raise InvalidRequest("Certificate hash does not match student name, course and issuedAt")
            url = self.ledger.lookup_asset_url(tx_id, self.signer.address)
            if url != self.ledger.asset_url(fingerprint):
                raise InvalidRequest(f"Transaction {tx_id} did not create an asset for this certificate")
        except ProofChainError as e:
            return self._fail(ctx, Stage.RECONCILE, e)

        ctx.fingerprint = fingerprint
        ctx.tx_id = tx_id
        log.info("Reconciling certificate %s with tx %s", fingerprint, tx_id)
        return self._run(ctx, IssuanceState.BROADCAST)

    def _run(self, ctx: _Issuance, state: IssuanceState) -> IssuanceResult:
        while state in self._steps:
            stage, step = self._steps[state]
            ctx.history.append(state)
            try:
                state = step(ctx)
            except ProofChainError as e:
                return self._fail(ctx, stage, e)
            log.debug("Issuance %s -> %s", ctx.fingerprint, state.value)
        return ctx.result(state)

    def _fail(self, ctx: _Issuance, stage: Stage, error: ProofChainError) -> IssuanceResult:
        result = ctx.result(IssuanceState.FAILED, stage=stage, error=error)
        if stage is Stage.PERSIST:
            log.error(
                "Certificate %s is on-chain (tx %s) but was not stored: %s",
                ctx.fingerprint, ctx.tx_id, error,
            )
        else:
            log.warning("Issuance failed at %s: %s: %s", stage.value, error.kind, error)
        return result

    # ---------- steps ----------

    def _validate(self, ctx: _Issuance) -> IssuanceState:
        ctx.fingerprint = derive(ctx.student_name, ctx.course, ctx.issued_at)
        log.info("Mint request for certificate %s", ctx.fingerprint)
        return IssuanceState.VALIDATED

    def _fetch_params(self, ctx: _Issuance) -> IssuanceState:
        ctx.params = self.ledger.fetch_params(self.signer.address)
        return IssuanceState.PARAMS_FETCHED

    def _sign(self, ctx: _Issuance) -> IssuanceState:
        ctx.signed = self.ledger.build_and_sign(self.signer, ctx.fingerprint, ctx.params)
        return IssuanceState.SIGNED

    def _broadcast(self, ctx: _Issuance) -> IssuanceState:
        tx_id = self.ledger.broadcast(ctx.signed)
        if not tx_id:
            raise BroadcastRejected("Transaction broadcast failed: no transaction id returned")
        ctx.tx_id = tx_id
        return IssuanceState.BROADCAST

    def _persist(self, ctx: _Issuance) -> IssuanceState:
        cert = Certificate(
            student_name=ctx.student_name,
            course=ctx.course,
            certificate_hash=ctx.fingerprint,
            tx_id=ctx.tx_id,
        )
        record_id = self.store.insert(cert)
        ctx.record = cert
        log.info("Saved certificate %s as record %s", ctx.fingerprint, record_id)
        return IssuanceState.PERSISTED
