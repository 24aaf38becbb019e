# proofchain/settings.py
from functools import lru_cache
from typing import List, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    LEDGER_RPC_URL: str
    ASSET_CONTRACT_ADDRESS: str
    ISSUER_MNEMONIC: Optional[str] = None
    ISSUER_PRIVATE_KEY: Optional[str] = None
    DATABASE_URL: str

    LEDGER_TIMEOUT: float = 10.0
    LEDGER_GAS_LIMIT: int = 300000
    LEDGER_CONFIRM: bool = True
    LEDGER_CONFIRM_TIMEOUT: float = 120.0

    ASSET_NAME: str = "ProofChain Certificate"
    ASSET_UNIT_NAME: str = "CERT"
    ASSET_URL_BASE: str = "https://proofchain.app/cert/"

    CORS_ORIGINS: List[str] = ["*"]

    LOG_LEVEL: str = "INFO"
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def _require_issuer_key(self):
        if not self.ISSUER_MNEMONIC and not self.ISSUER_PRIVATE_KEY:
            raise ValueError("ISSUER_MNEMONIC or ISSUER_PRIVATE_KEY must be set")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
