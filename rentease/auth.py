"""Password hashing, JWT handling, and credential checks."""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import AuthenticationError, AuthorizationError, ValidationError
from .models import User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
settings = get_settings()

ACCESS_TOKEN = "access"
EMAIL_VERIFICATION_TOKEN = "email-verification"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire, "typ": to_encode.get("typ", ACCESS_TOKEN)})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_user_token(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role.value})


def create_email_verification_token(user: User) -> str:
    return create_access_token(
        {"sub": str(user.id), "email": user.email, "typ": EMAIL_VERIFICATION_TOKEN},
        timedelta(hours=settings.email_token_expire_hours),
    )


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired. Please log in again.") from exc
    except JWTError as exc:
        raise AuthenticationError("Invalid token. Please log in again.") from exc
    if payload.get("typ", ACCESS_TOKEN) != expected_type:
        raise AuthenticationError("Invalid token. Please log in again.")
    return payload


def decode_email_verification_token(token: str) -> Dict[str, Any]:
    """Decode a verification link token; failures are reported as bad input, not bad credentials."""

    try:
        return decode_token(token, EMAIL_VERIFICATION_TOKEN)
    except AuthenticationError as exc:
        if "expired" in exc.message:
            raise ValidationError("Verification token expired. Please request a new verification email.") from exc
        raise ValidationError("Invalid verification token") from exc


def authenticate_user(db: Session, email: str, password: str) -> User:
    """Return the user for valid credentials, gated on both verification flags."""

    user: Optional[User] = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.hashed_password):
        raise AuthenticationError("Invalid credentials")
    if not user.is_verified:
        raise AuthenticationError(
            "Please verify your email address before logging in. Check your inbox for verification link."
        )
    if not user.is_id_verified:
        raise AuthorizationError(
            "Your account is pending ID verification. Please allow an administrator to review and approve your ID."
        )
    return user
