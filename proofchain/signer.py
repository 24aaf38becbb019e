# proofchain/signer.py
import logging

from eth_account import Account

from .exceptions import SigningError

log = logging.getLogger(__name__)

Account.enable_unaudited_hdwallet_features()


class IssuerSigner:
    """
    Holds the issuer's key and signs transactions with it.
    Shared read-only by every issuance; swap the instance to rotate keys.
    """

    def __init__(self, account):
        self._account = account

    @classmethod
    def from_private_key(cls, private_key: str) -> "IssuerSigner":
        try:
            return cls(Account.from_key(private_key))
        except Exception as e:
            raise SigningError(f"Failed to load issuer private key: {e}") from e

    @classmethod
    def from_mnemonic(cls, mnemonic: str) -> "IssuerSigner":
        try:
            return cls(Account.from_mnemonic(mnemonic))
        except Exception as e:
            raise SigningError(f"Failed to decode mnemonic: {e}") from e

    @classmethod
    def from_settings(cls, settings) -> "IssuerSigner":
        if settings.ISSUER_MNEMONIC:
            signer = cls.from_mnemonic(settings.ISSUER_MNEMONIC)
        else:
            signer = cls.from_private_key(settings.ISSUER_PRIVATE_KEY)
        log.info("Issuer address: %s", signer.address)
        return signer

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: dict):
        try:
            return self._account.sign_transaction(tx)
        except Exception as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e

    def __repr__(self) -> str:
        return f"IssuerSigner({self.address})"
