# proofchain/main.py
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .exceptions import DuplicateHash, ProofChainError, StoreUnavailable
from .issuance import IssuanceCoordinator, IssuanceResult, Stage
from .ledger import LedgerClient
from .schemas import CertificateOut, HealthOut, MintIn, MintOut, ReconcileIn, VerifyOut
from .settings import Settings, get_settings
from .signer import IssuerSigner
from .store import CertificateStore
from .verification import VerificationService

log = logging.getLogger(__name__)


def _error_body(exc: ProofChainError) -> dict:
    # client errors carry "message", server-side ones "error"
    key = "message" if exc.status_code < 500 else "error"
    return {"success": False, key: exc.message}


def failure_response(result: IssuanceResult) -> JSONResponse:
    """Turn a FAILED issuance into the HTTP response the caller sees."""
    err = result.error
    body = _error_body(err)
    body["stage"] = result.stage.value
    body["onChainCommitted"] = result.on_chain_committed
    status = err.status_code

    reconciliation = {
        "txId": result.tx_id,
        "certificateHash": result.certificate_hash,
        "issuedAt": result.issued_at_millis,
        "studentName": result.student_name,
        "course": result.course,
    }

    if result.stage is Stage.PERSIST:
        if isinstance(err, StoreUnavailable):
            status = 500
        body.pop("message", None)
        if isinstance(err, DuplicateHash) and result.reconciling:
            body["error"] = (
                f"Certificate {result.certificate_hash} is already stored; nothing left to reconcile."
            )
            return JSONResponse(status_code=status, content=body)
        if isinstance(err, DuplicateHash):
            body["error"] = (
                f"Failed to save certificate: {err.message}. "
                "The on-chain transaction has already executed but another certificate "
                "holds this hash; review it manually."
            )
        else:
            body["error"] = (
                f"Failed to save certificate: {err.message}. "
                "The on-chain transaction has already executed; use the reconciliation details to store it."
            )
        body["reconciliation"] = reconciliation
    elif result.stage is Stage.RECONCILE:
        body["reconciliation"] = reconciliation
    elif result.on_chain_committed is None:
        body["error"] = (
            f"{err.message}. The transaction may have executed on-chain; "
            "check it before issuing again."
        )
        body["reconciliation"] = {
            "candidateTxId": result.candidate_tx_id,
            "certificateHash": result.certificate_hash,
            "issuedAt": result.issued_at_millis,
        }
    return JSONResponse(status_code=status, content=body)


def create_app(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerClient] = None,
    store: Optional[CertificateStore] = None,
    signer: Optional[IssuerSigner] = None,
    clock=None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    signer = signer or IssuerSigner.from_settings(settings)
    ledger = ledger or LedgerClient.from_settings(settings)
    store = store or CertificateStore.from_url(settings.DATABASE_URL)

    coordinator = IssuanceCoordinator(ledger, store, signer, clock=clock)
    verifier = VerificationService(store)

    app = FastAPI(title="ProofChain Certificate Backend")
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.verifier = verifier
    app.state.store = store
    app.state.signer = signer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.on_event("startup")
    def startup():
        store.init()
        log.info("Certificate store ready")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        log.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.exception_handler(ProofChainError)
    async def proofchain_error_handler(request: Request, exc: ProofChainError):
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # malformed bodies are validation failures like empty fields: 400, not 422
        if request.url.path == "/mint":
            message = "Student name and course required"
        else:
            message = "Invalid request body"
        log.info("Rejected %s body: %s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    @app.get("/health", response_model=HealthOut)
    def health():
        return {
            "status": "ok",
            "storeConnected": store.ping(),
            "issuer": signer.address,
        }

    @app.post("/mint", response_model=MintOut)
    def mint(data: MintIn):
        """
        Derive the certificate hash, create the asset on-chain and store the record.
        """
        result = coordinator.issue(data.studentName, data.course)
        if not result.succeeded:
            return failure_response(result)
        return {"success": True, "txId": result.tx_id, "certificateHash": result.certificate_hash}

    @app.post("/reconcile", response_model=MintOut)
    def reconcile(data: ReconcileIn):
        """
        Store a certificate whose asset is already on-chain but whose record was lost
        after a failed save. Takes the `reconciliation` object from the failed /mint.
        """
        result = coordinator.reconcile(
            data.studentName,
            data.course,
            data.issuedAt,
            data.certificateHash,
            data.txId,
        )
        if not result.succeeded:
            return failure_response(result)
        return {"success": True, "txId": result.tx_id, "certificateHash": result.certificate_hash}

    @app.get("/verify/{certificate_hash}", response_model=VerifyOut)
    def verify(certificate_hash: str):
        cert = verifier.verify(certificate_hash)
        return {"success": True, "certificate": CertificateOut.from_record(cert)}

    return app


app = create_app()


def run():
    settings = get_settings()
    uvicorn.run("proofchain.main:app", host=settings.HOST, port=settings.PORT)
