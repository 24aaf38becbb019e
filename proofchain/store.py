# proofchain/store.py
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .exceptions import DuplicateHash, StoreUnavailable
from .models import Certificate

log = logging.getLogger(__name__)


def make_engine(database_url: str):
    """Engine for the certificate store. In-memory SQLite shares one connection."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=False, pool_pre_ping=True)


class CertificateStore:
    """
    Durable certificate records keyed by certificate_hash.

    There is no "connected" flag to check: every call either works or raises
    StoreUnavailable.
    """

    def __init__(self, engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "CertificateStore":
        return cls(make_engine(database_url))

    def init(self) -> None:
        """Create the certificates table."""
        try:
            SQLModel.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Certificate store unavailable: {e}") from e

    def insert(self, cert: Certificate) -> int:
        """Store a newly issued certificate. The unique index rejects a second copy of a hash."""
        try:
            with Session(self.engine) as s:
                s.add(cert)
                s.commit()
                s.refresh(cert)
                return cert.id
        except IntegrityError as e:
            raise DuplicateHash(f"Certificate hash already exists: {cert.certificate_hash}") from e
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Certificate store unavailable: {e}") from e

    def find_by_hash(self, certificate_hash: str) -> Optional[Certificate]:
        """Fetch a certificate using its hash."""
        try:
            with Session(self.engine) as s:
                q = select(Certificate).where(Certificate.certificate_hash == certificate_hash)
                return s.exec(q).first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Certificate store unavailable: {e}") from e

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            log.warning("Certificate store ping failed: %s", e)
            return False
