"""
FastAPI dependencies for authentication.

The bearer token is resolved to a User row once per request and handed to the
core as an explicit Principal value; nothing below the route layer reads
request or session state.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import User, UserRole
from auth.permissions import Principal
from auth.security import verify_token
from errors import Unauthenticated

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme; missing credentials are reported as 401 below
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from the bearer token.

    Raises:
        Unauthenticated: 401 if the token is missing, invalid, expired,
            not an access token, or references an unknown user

    Example:
        @app.get("/api/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    if credentials is None or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise Unauthenticated("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        raise Unauthenticated("Invalid or expired token")

    if payload.get("type") != "access":
        logger.info(f"Invalid token type: {payload.get('type')}")
        raise Unauthenticated("Invalid token type")

    # Malformed subjects are a 401, not a 500
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        logger.info(f"Invalid user_id format in token: {payload.get('sub')}")
        raise Unauthenticated("Invalid token format")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise Unauthenticated("User not found")

    logger.debug(f"User authenticated via JWT: {user.email}")
    return user


async def get_current_principal(current_user: User = Depends(get_current_user)) -> Principal:
    """Convert the authenticated user into the Principal the core operates on."""
    return Principal.from_user(current_user)


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """
    Dependency for admin-only endpoints.

    Raises:
        HTTPException: 403 if the user is not a global admin
    """
    if UserRole(current_user.role) != UserRole.admin:
        logger.info(f"Access denied: user {current_user.email} is not an admin")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Required role: admin",
        )
    return current_user
