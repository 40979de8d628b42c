# shadowchat/core/security.py

import time

import pgpy
from sqlalchemy.orm import Session

from shadowchat.core.config import LOGIN_MAX_SKEW_SECONDS
from shadowchat.core.errors import AuthorizationError
from shadowchat.core.user import get_user_by_username
from shadowchat.models.user import User
from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)


def verify_pgp_signature(public_key_text: str, signature_text: str, data: str) -> bool:
    """
    Verify a detached PGP signature for a given data string using the provided public key.
    """
    try:
        key, _ = pgpy.PGPKey.from_blob(public_key_text)
        sig = pgpy.PGPSignature.from_blob(signature_text)
        return bool(key.verify(data, sig))
    except Exception as e:
        logger.warning(f"Signature verification failed: {e}")
        return False


def signed_identity(username: str, timestamp: str) -> str:
    """The string a client signs to prove who it is"""
    return f"{username}|{timestamp}"


def check_timestamp(timestamp: str, max_skew: int = LOGIN_MAX_SKEW_SECONDS) -> None:
    """Reject stale or future-dated proofs (milliseconds since epoch)."""
    try:
        millis = int(timestamp)
    except (TypeError, ValueError):
        raise AuthorizationError("Invalid timestamp")
    if abs(int(time.time() * 1000) - millis) > max_skew * 1000:
        raise AuthorizationError("Timestamp outside the accepted window")


def authenticate(db: Session, username: str, timestamp: str, signature: str) -> User:
    """Resolve a signed identity proof to a user or raise AuthorizationError."""
    user = get_user_by_username(db, username)
    if user is None:
        raise AuthorizationError("Login failed: User not found")

    try:
        check_timestamp(timestamp)
    except AuthorizationError as e:
        raise AuthorizationError(f"Login failed: {e.reason}")

    if not verify_pgp_signature(user.public_key, signature, signed_identity(username, timestamp)):
        raise AuthorizationError("Login failed: Invalid identity signature")
    return user
