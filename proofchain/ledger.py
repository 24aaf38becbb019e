# proofchain/ledger.py
import json
import logging
import os
import threading
from typing import NamedTuple, Optional

from hexbytes import HexBytes
from requests.exceptions import ConnectionError, ConnectTimeout, RequestException, Timeout
from urllib3.exceptions import ConnectTimeoutError, MaxRetryError, NewConnectionError
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound, Web3Exception

from .exceptions import BroadcastRejected, LedgerUnavailable, SigningError

log = logging.getLogger(__name__)

# load ABI
HERE = os.path.dirname(__file__)
ABI_PATH = os.path.join(HERE, "artifacts", "CertificateAsset.json")
with open(ABI_PATH) as f:
    artifact = json.load(f)
ABI = artifact.get("abi", artifact)  # if the file is just the abi array

ASSET_TOTAL = 1
ASSET_DECIMALS = 0

# anything the RPC transport or the node can throw at us
_TRANSPORT_ERRORS = (RequestException, Web3Exception, ValueError, OSError)

# node errors that mean the transaction was refused outright and never entered the pool
_DEFINITE_REJECTIONS = (
    "nonce too low",
    "replacement transaction underpriced",
    "insufficient funds",
    "intrinsic gas too low",
    "exceeds block gas limit",
)


class NetworkParams(NamedTuple):
    chain_id: int
    nonce: int
    gas_price: int


class SignedAsset(NamedTuple):
    raw_transaction: bytes
    tx_id: str  # hash of the signed tx, known before broadcast
    asset_url: str
    sender: Optional[str] = None
    nonce: Optional[int] = None


def _never_sent(e: ConnectionError) -> bool:
    """True when the connection was never established, so no request body left us."""
    if isinstance(e, ConnectTimeout):
        return True
    reason = e.args[0] if e.args else None
    if isinstance(reason, MaxRetryError):
        reason = reason.reason
    return isinstance(reason, (NewConnectionError, ConnectTimeoutError))


def _is_definite_rejection(e: Exception) -> bool:
    text = str(e).lower()
    return any(marker in text for marker in _DEFINITE_REJECTIONS)


def _raw_bytes(signed_tx) -> bytes:
    """
    Works with both eth-account return shapes:
      - signed_tx.rawTransaction  (older)
      - signed_tx.raw_transaction (newer)
    """
    raw = getattr(signed_tx, "raw_transaction", None)
    if raw is None:
        raw = getattr(signed_tx, "rawTransaction", None)
    if raw is None:
        raise SigningError("Signed transaction object does not contain raw tx bytes")
    return bytes(raw)


class LedgerClient:
    """
    Talks to the EVM node that hosts the CertificateAsset contract.

    Every failure leaves this class as a LedgerUnavailable, SigningError or
    BroadcastRejected; raw requests/web3 errors never escape.

    Nonces are handed out locally on top of the node's pending count so that
    concurrent issuances from one account do not collide. The lock only
    guards the allocation, never a network call.
    """

    def __init__(
        self,
        w3: Web3,
        contract_address: str,
        asset_name: str = "ProofChain Certificate",
        unit_name: str = "CERT",
        url_base: str = "https://proofchain.app/cert/",
        gas_limit: int = 300000,
        confirm: bool = True,
        confirm_timeout: float = 120.0,
    ):
        self.w3 = w3
        self.contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=ABI)
        self.asset_name = asset_name
        self.unit_name = unit_name
        self.url_base = url_base
        self.gas_limit = gas_limit
        self.confirm = confirm
        self.confirm_timeout = confirm_timeout
        self._nonce_lock = threading.Lock()
        self._next_nonce = {}

    @classmethod
    def from_settings(cls, settings) -> "LedgerClient":
        provider = Web3.HTTPProvider(
            settings.LEDGER_RPC_URL,
            request_kwargs={"timeout": settings.LEDGER_TIMEOUT},
        )
        return cls(
            Web3(provider),
            settings.ASSET_CONTRACT_ADDRESS,
            asset_name=settings.ASSET_NAME,
            unit_name=settings.ASSET_UNIT_NAME,
            url_base=settings.ASSET_URL_BASE,
            gas_limit=settings.LEDGER_GAS_LIMIT,
            confirm=settings.LEDGER_CONFIRM,
            confirm_timeout=settings.LEDGER_CONFIRM_TIMEOUT,
        )

    def asset_url(self, fingerprint: str) -> str:
        return f"{self.url_base}{fingerprint}"

    def fetch_params(self, sender: str) -> NetworkParams:
        try:
            chain_id = int(self.w3.eth.chain_id)
            pending = int(self.w3.eth.get_transaction_count(sender, "pending"))
            gas_price = int(self.w3.eth.gas_price)
        except _TRANSPORT_ERRORS as e:
            raise LedgerUnavailable(f"Unable to connect to ledger: {e}") from e
        params = NetworkParams(chain_id=chain_id, nonce=self._allocate_nonce(sender, pending), gas_price=gas_price)
        log.debug("Network params: %s", params)
        return params

    def _allocate_nonce(self, sender: str, pending: int) -> int:
        with self._nonce_lock:
            nonce = max(pending, self._next_nonce.get(sender, 0))
            self._next_nonce[sender] = nonce + 1
        return nonce

    def _release_nonces(self, sender: Optional[str]) -> None:
        # resync with the node's pending count on the next allocation
        if sender is None:
            return
        with self._nonce_lock:
            self._next_nonce.pop(sender, None)

    def build_and_sign(self, signer, fingerprint: str, params: NetworkParams) -> SignedAsset:
        """
        Build the createAsset call locally (every field that would need a node
        round trip is supplied) and sign it with the issuer's key.
        """
        url = self.asset_url(fingerprint)
        try:
            tx = self.contract.functions.createAsset(
                self.asset_name,
                self.unit_name,
                ASSET_TOTAL,
                ASSET_DECIMALS,
                url,
            ).build_transaction({
                "from": signer.address,
                "chainId": params.chain_id,
                "nonce": params.nonce,
                "gas": self.gas_limit,
                "gasPrice": params.gas_price,
            })
        except (Web3Exception, ValueError, TypeError) as e:
            raise SigningError(f"Failed to build asset transaction: {e}") from e

        signed = signer.sign_transaction(tx)
        return SignedAsset(
            raw_transaction=_raw_bytes(signed),
            tx_id=Web3.to_hex(signed.hash),
            asset_url=url,
            sender=signer.address,
            nonce=params.nonce,
        )

    def broadcast(self, signed: SignedAsset) -> str:
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ConnectionError as e:
            if _never_sent(e):
                self._release_nonces(signed.sender)
                raise LedgerUnavailable(f"Unable to connect to ledger: {e}") from e
            # dropped after the body went out, the node may hold the tx
            raise BroadcastRejected(
                f"Connection lost during broadcast, on-chain state unknown: {e}", tx_id=signed.tx_id
            ) from e
        except Timeout as e:
            raise BroadcastRejected(f"Broadcast timed out, on-chain state unknown: {e}", tx_id=signed.tx_id) from e
        except _TRANSPORT_ERRORS as e:
            if _is_definite_rejection(e):
                self._release_nonces(signed.sender)
                raise BroadcastRejected(
                    f"Ledger rejected transaction: {e}", tx_id=signed.tx_id, definite=True
                ) from e
            raise BroadcastRejected(f"Ledger rejected transaction: {e}", tx_id=signed.tx_id) from e

        if not tx_hash:
            raise BroadcastRejected("Transaction broadcast failed: no transaction id returned", tx_id=signed.tx_id)

        tx_id = Web3.to_hex(HexBytes(tx_hash))
        log.info("TX sent: %s", tx_id)
        if self.confirm:
            self._wait_for_confirmation(tx_id)
        return tx_id

    def _wait_for_confirmation(self, tx_id: str) -> None:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_id, timeout=self.confirm_timeout)
        except TimeExhausted as e:
            raise BroadcastRejected(
                f"Transaction not confirmed within {self.confirm_timeout}s", tx_id=tx_id
            ) from e
        except _TRANSPORT_ERRORS as e:
            raise BroadcastRejected(f"Could not confirm transaction: {e}", tx_id=tx_id) from e

        if receipt.get("status") == 0:
            raise BroadcastRejected("Transaction reverted", tx_id=tx_id, definite=True)
        log.info("TX confirmed: %s (block %s)", tx_id, receipt.get("blockNumber"))

    def lookup_asset_url(self, tx_id: str, creator: str) -> Optional[str]:
        """
        URL embedded in a confirmed createAsset transaction sent by `creator`
        to our contract. None when the tx is unknown, failed, or is not ours.
        """
        try:
            tx = self.w3.eth.get_transaction(tx_id)
            receipt = self.w3.eth.get_transaction_receipt(tx_id)
        except TransactionNotFound:
            return None
        except _TRANSPORT_ERRORS as e:
            raise LedgerUnavailable(f"Unable to connect to ledger: {e}") from e

        if receipt.get("status") != 1:
            return None
        if not tx.get("to") or Web3.to_checksum_address(tx["to"]) != self.contract.address:
            return None
        if Web3.to_checksum_address(tx["from"]) != Web3.to_checksum_address(creator):
            return None

        try:
            fn, args = self.contract.decode_function_input(HexBytes(tx["input"]))
        except ValueError:
            return None
        if fn.fn_name != "createAsset":
            return None
        return args["url"]
