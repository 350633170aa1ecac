"""
Security utilities for password hashing and JWT access tokens.

This module is the credential verifier and session issuer of the service:
- Password hashing using Argon2id
- Bearer access token creation and verification
"""

import logging
import secrets
import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)


def is_production_like() -> bool:
    """
    Check if ENVIRONMENT is production or staging.

    Used to refuse insecure defaults (JWT secret, admin password).
    """
    env = os.environ.get("ENVIRONMENT", "development").lower()
    return env in ("production", "staging")


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
if not SECRET_KEY:
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY environment variable is required in production. "
            "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    SECRET_KEY = "dev-insecure-key-" + secrets.token_urlsafe(32)
    logger.warning(
        "JWT_SECRET_KEY not set, using a temporary development key. "
        "Tokens will not survive a restart."
    )

ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
if ALGORITHM not in SUPPORTED_ALGORITHMS:
    logger.warning(
        f"Unsupported JWT_ALGORITHM={ALGORITHM}, falling back to HS256. "
        f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
    )
    ALGORITHM = "HS256"

try:
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    if ACCESS_TOKEN_EXPIRE_MINUTES < 1 or ACCESS_TOKEN_EXPIRE_MINUTES > 1440:
        logger.warning(
            f"ACCESS_TOKEN_EXPIRE_MINUTES={ACCESS_TOKEN_EXPIRE_MINUTES} is outside 1-1440, using 60."
        )
        ACCESS_TOKEN_EXPIRE_MINUTES = 60
except ValueError:
    logger.warning("Invalid ACCESS_TOKEN_EXPIRE_MINUTES value, using 60.")
    ACCESS_TOKEN_EXPIRE_MINUTES = 60


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    logger.debug("Hashing password")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Returns:
        True if password matches, False otherwise (including unparseable hashes)
    """
    try:
        is_valid = pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.info("Stored password hash is not recognised")
        return False
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token.

    Args:
        data: Claims to encode (sub, role, email)
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string

    Example:
        >>> token = create_access_token({"sub": "1", "role": "admin"})
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    logger.debug(f"Access token created for sub={data.get('sub')}, expires at: {expire}")
    return encoded_jwt


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a JWT.

    Returns:
        Decoded payload if the signature and expiry are valid, None otherwise
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"JWT verification failed: {str(e)}")
        return None
    logger.debug(f"Token verified for user: {payload.get('sub')}")
    return payload
