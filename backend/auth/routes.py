"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration with a role
- Login (bearer access token)
- Current user lookup
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from database import get_db
from models import User, UserRole
import schemas
from auth.security import hash_password, verify_password, create_access_token
from auth.dependencies import get_current_user
from errors import Unauthenticated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
async def register(request: schemas.RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account.

    The role is chosen at registration and never changes afterwards;
    it defaults to a plain user.

    Raises:
        HTTPException: 400 if email already registered
    """
    logger.info(f"Registration attempt for email: {request.email} with role: {request.role.value}")

    existing_user = db.query(User).filter(User.email == request.email).first()
    if existing_user:
        logger.info(f"Registration failed: email already exists: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A user with this email already exists",
        )

    new_user = User(
        name=request.name.strip(),
        email=request.email,
        password_hash=hash_password(request.password),
        role=request.role,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info(f"User registered successfully: {new_user.email} (ID: {new_user.id})")
    return new_user


@router.post("/login", response_model=schemas.TokenResponse)
async def login(request: schemas.LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Returns:
        Access token for API requests

    Raises:
        Unauthenticated: 401 if credentials are invalid
    """
    logger.info(f"Login attempt for email: {request.email}")

    user = db.query(User).filter(User.email == request.email).first()
    if not user or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed for: {request.email}")
        raise Unauthenticated("Invalid email or password")

    token_data = {"sub": str(user.id), "role": UserRole(user.role).value, "email": user.email}
    access_token = create_access_token(token_data)

    logger.info(f"User logged in successfully: {user.email} (ID: {user.id})")
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=schemas.User)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current authenticated user information."""
    logger.debug(f"Fetching user info for: {current_user.email}")
    return current_user
