import os
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

# proofchain.main builds its module-level app from the environment on import
os.environ.setdefault("LEDGER_RPC_URL", "http://127.0.0.1:8545")
os.environ.setdefault("ASSET_CONTRACT_ADDRESS", "0x5FbDB2315678afecb367f032d93F642f64180aa3")
os.environ.setdefault("ISSUER_PRIVATE_KEY", "0x" + "11" * 32)
os.environ.setdefault("DATABASE_URL", "sqlite://")

from proofchain.ledger import NetworkParams, SignedAsset  # noqa: E402
from proofchain.signer import IssuerSigner  # noqa: E402
from proofchain.store import CertificateStore, make_engine  # noqa: E402

TEST_KEY = "0x" + "11" * 32
CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
URL_BASE = "https://proofchain.app/cert/"
TX_ID = "0x" + "ab" * 32
CANDIDATE_TX_ID = "0x" + "cd" * 32
FIXED_NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
FIXED_MILLIS = 1704067200000


@pytest.fixture
def signer() -> IssuerSigner:
    return IssuerSigner.from_private_key(TEST_KEY)


@pytest.fixture
def store() -> CertificateStore:
    s = CertificateStore(make_engine("sqlite://"))
    s.init()
    return s


@pytest.fixture
def ledger() -> MagicMock:
    ledger = MagicMock()
    ledger.asset_url.side_effect = lambda fp: f"{URL_BASE}{fp}"
    ledger.fetch_params.return_value = NetworkParams(chain_id=31337, nonce=0, gas_price=1_000_000_000)
    ledger.build_and_sign.side_effect = lambda signer, fp, params: SignedAsset(
        raw_transaction=b"\x01\x02", tx_id=CANDIDATE_TX_ID, asset_url=f"{URL_BASE}{fp}"
    )
    ledger.broadcast.return_value = TX_ID
    return ledger


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
