import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from perpsim.core.config import settings
from perpsim.database import get_db
from perpsim.services import ledger

logger = logging.getLogger(__name__)


class IdentityVerifier(ABC):
    """Maps an opaque bearer token to an external subject id"""

    @abstractmethod
    def verify(self, token: str) -> Optional[str]:
        pass


class HmacTokenVerifier(IdentityVerifier):
    """Tokens of the form `<subject>.<hex hmac-sha256(subject)>` keyed by SECRET_KEY"""

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = secret_key if secret_key is not None else settings.SECRET_KEY

    def sign(self, subject: str) -> str:
        if not self.secret_key:
            raise RuntimeError("SECRET_KEY is not configured")
        return hmac.new(self.secret_key.encode(), subject.encode(), hashlib.sha256).hexdigest()

    def verify(self, token: str) -> Optional[str]:
        if not self.secret_key:
            logger.warning("SECRET_KEY is not configured; rejecting bearer token")
            return None
        subject, sep, signature = token.rpartition(".")
        if not sep or not subject or not signature:
            return None
        if not hmac.compare_digest(self.sign(subject), signature):
            return None
        return subject


_verifier: IdentityVerifier = HmacTokenVerifier()


def get_identity_verifier() -> IdentityVerifier:
    return _verifier


def issue_token(subject: str, verifier: Optional[HmacTokenVerifier] = None) -> str:
    """Mint a bearer token for local use and tests"""
    verifier = verifier or HmacTokenVerifier()
    return f"{subject}.{verifier.sign(subject)}"


@dataclass
class AuthenticatedUser:
    id: int
    external_id: str


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> AuthenticatedUser:
    """Resolve the bearer token to an internal user, creating the user on first sight"""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    external_id = verifier.verify(authorization[7:].strip())
    if not external_id:
        logger.info("Rejected request with invalid bearer token")
        raise HTTPException(status_code=401, detail="Invalid token")

    user = ledger.get_or_create_user(db, external_id)
    db.commit()
    return AuthenticatedUser(id=user.id, external_id=user.external_id)
