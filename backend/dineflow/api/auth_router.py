"""Auth endpoints for staff signup and login."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from dineflow import config
from dineflow.db.models import User
from dineflow.db.dependencies import (
    STAFF_ROLES,
    get_storage,
    get_current_user,
    hash_password,
    verify_password,
    create_access_token,
)
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupRequest(BaseModel):
    username: str
    password: str
    roles: Optional[list[str]] = None


class UserResponse(BaseModel):
    id: int
    username: str
    roles: list[str]


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str


def _signup(db, request: SignupRequest) -> User:
    if not config.IS_DEV and db.query(User).count() > 0:
        raise HTTPException(status_code=403, detail="Signup disabled")
    if not request.username or not request.password:
        raise HTTPException(status_code=400, detail="username and password are required")
    if db.query(User).filter(User.username == request.username).first():
        raise HTTPException(status_code=409, detail="username already exists")

    roles = request.roles or []
    invalid = [r for r in roles if r not in STAFF_ROLES]
    if invalid:
        raise HTTPException(status_code=400, detail=f"Invalid roles: {', '.join(invalid)}")

    user = User(username=request.username, password_hash=hash_password(request.password), roles=roles)
    db.add(user)
    db.flush()
    return user


@router.post("/signup", response_model=UserResponse, summary="Create a staff user (dev/bootstrap)")
def signup_user(request: SignupRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    """
    Create a user for dev/bootstrap.

    Allowed when ENVIRONMENT=dev or when no users exist yet.
    """
    user = storage.run(_signup, request)
    return UserResponse(id=user.id, username=user.username, roles=user.roles or [])


@router.post("/login", response_model=TokenResponse, summary="Login and get JWT token")
def login_user(request: LoginRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    """Authenticate a user and return a JWT access token."""
    user = storage.run(lambda db: db.query(User).filter(User.username == request.username).first())
    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access_token = create_access_token(
        data={"sub": str(user.id), "roles": user.roles or []},
        expires_delta=timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return TokenResponse(access_token=access_token, token_type="bearer")


@router.get("/me", response_model=UserResponse, summary="Current staff user")
def me(current_user: User = Depends(get_current_user)):
    return UserResponse(id=current_user.id, username=current_user.username, roles=current_user.roles or [])
