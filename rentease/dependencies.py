"""Reusable FastAPI dependencies for auth and database access."""
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .database import get_db
from .errors import AuthenticationError
from .models import User
from .permissions import Operation, ensure_allowed

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def _user_from_token(token: str, db: Session) -> User:
    payload = decode_token(token)
    subject: str | None = payload.get("sub")
    if subject is None or not subject.isdigit():
        raise AuthenticationError("Missing subject in token")
    user = db.get(User, int(subject))
    if not user:
        raise AuthenticationError("User not found. Please log in again.")
    if not user.is_verified:
        raise AuthenticationError("Email not verified. Please check your email and verify your account.")
    return user


def get_current_user(token: Optional[str] = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    if not token:
        raise AuthenticationError("Access denied. No token provided or invalid format. Please log in first.")
    return _user_from_token(token, db)


def get_optional_user(token: Optional[str] = Depends(oauth_scheme), db: Session = Depends(get_db)) -> Optional[User]:
    """Resolve the caller on public routes; anonymous callers get ``None``."""

    if not token:
        return None
    return _user_from_token(token, db)


def require(operation: Operation) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        ensure_allowed(current_user.role, operation)
        return current_user

    return dependency
