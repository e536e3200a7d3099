"""FastAPI dependencies for storage injection and auth."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request, HTTPException, Depends, Header
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from dineflow import config
from dineflow.db.models import User
from dineflow.storage import SQLAlchemyStorage

STAFF_ROLES = {"waiter", "kitchen", "cashier", "manager", "admin"}
ADMIN_ROLES = {"admin", "manager"}


def get_storage(request: Request) -> SQLAlchemyStorage:
    """
    FastAPI dependency returning the app's storage.

    Created on first use when the app was started without a lifespan
    (e.g. under an ASGI test transport).
    """
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = SQLAlchemyStorage(config.DATABASE_URL)
        request.app.state.storage = storage
    return storage


# ---------- Auth helpers ----------

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    """Hash a plain text password."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def _user_from_token(storage: SQLAlchemyStorage, token: str) -> Optional[User]:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id = payload.get("sub")
    except JWTError:
        return None
    if user_id is None:
        return None

    session = storage._get_session()
    try:
        return session.query(User).filter(User.id == int(user_id)).first()
    finally:
        session.close()


def get_current_user(
    token: str = Depends(oauth2_scheme),
    storage: SQLAlchemyStorage = Depends(get_storage),
) -> User:
    """Get the current user from JWT token."""
    user = _user_from_token(storage, token)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """Any authenticated staff member."""
    if not STAFF_ROLES.intersection(current_user.roles or []):
        raise HTTPException(status_code=403, detail="Staff privileges required")
    return current_user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require an admin or manager user."""
    if not ADMIN_ROLES.intersection(current_user.roles or []):
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return current_user


def require_reaper_access(
    token: Optional[str] = Depends(optional_oauth2_scheme),
    x_cron_secret: Optional[str] = Header(None),
    storage: SQLAlchemyStorage = Depends(get_storage),
) -> str:
    """
    Gate for the reaper endpoint: an admin token, or the shared cron secret
    for the external scheduler. Returns the actor name for the audit trail.
    """
    if x_cron_secret and config.CRON_SECRET and secrets.compare_digest(x_cron_secret, config.CRON_SECRET):
        return "cron"
    if token:
        user = _user_from_token(storage, token)
        if user is not None and ADMIN_ROLES.intersection(user.roles or []):
            return user.username
    raise HTTPException(status_code=401, detail="Reaper access requires an admin token or cron secret")
