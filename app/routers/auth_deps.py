"""
Authentication dependencies.

Tokens are minted by the identity provider; this service only verifies them
and uses the subject as the owner of a storage namespace.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from app.core.exceptions import NotAuthenticated
from app.core import security

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


@dataclass(frozen=True)
class Principal:
    subject: str


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> Principal:
    """
    Extracts and validates the current user from the JWT token.
    """
    if not token:
        raise NotAuthenticated("Not authenticated")

    payload = security.decode_access_token(token)

    if payload is None:
        logger.warning("Authentication failed: Invalid token")
        raise NotAuthenticated()

    if payload.get("error") == "TOKEN_EXPIRED":
        logger.info("Authentication failed: Token expired")
        raise NotAuthenticated("TOKEN_EXPIRED")

    if payload.get("type") != "access":
        logger.warning("Authentication failed: Invalid token type")
        raise NotAuthenticated("Invalid token type")

    subject = payload.get("sub")
    if not subject:
        logger.warning("Authentication failed: Missing subject in token")
        raise NotAuthenticated("Missing subject in token")

    return Principal(subject=str(subject))
