"""
Security utilities for authentication.

Provides:
- Password hashing (bcrypt)
- JWT generation and validation for session tokens and activation tokens

SECURITY REQUIREMENTS:
- SECRET_KEY must be set via environment variable
- SECRET_KEY must be cryptographically secure (32+ characters)
- SECRET_KEY must NEVER be committed to source control
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
import bcrypt
from core.config import settings

SECRET_KEY = settings.SECRET_KEY

# Validate SECRET_KEY strength at module load
if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

ALGORITHM = "HS256"

# Token purposes; a token minted for one purpose is rejected for the other.
PURPOSE_SESSION = "session"
PURPOSE_ACTIVATION = "activation"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )


def get_password_hash(password: str) -> str:
    """Hash a password."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def create_token(data: Dict, purpose: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire, "purpose": purpose})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a session token. ``data["sub"]`` is the identity id."""
    return create_token(
        data,
        PURPOSE_SESSION,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_activation_token(email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create the activation reference carried by invitation / reset links."""
    return create_token(
        {"sub": email},
        PURPOSE_ACTIVATION,
        expires_delta or timedelta(minutes=settings.ACTIVATION_TOKEN_TTL_MINUTES),
    )


def decode_token(token: str, purpose: str) -> Optional[Dict]:
    """Decode a token and check its purpose. None if invalid or expired."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != purpose:
        return None
    return payload


def decode_access_token(token: str) -> Optional[Dict]:
    """Decode and validate a session token."""
    return decode_token(token, PURPOSE_SESSION)
