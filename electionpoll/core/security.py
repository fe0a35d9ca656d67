"""Security and authentication utilities."""
import hmac
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from fastapi import HTTPException, Request

from electionpoll.core import config


def create_code_lookup_key(phone: str, code: str) -> str:
    """Create deterministic lookup key for a verification code using HMAC-SHA256.

    Codes are never stored in clear. Binding the phone into the MAC keeps two
    identities that happen to receive the same 6 digits on distinct keys.

    Returns:
        64-character hex string (SHA256 output)
    """
    return hmac.new(
        config.settings.SECRET_KEY.encode(),
        f"{phone}:{code}".encode(),
        hashlib.sha256
    ).hexdigest()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=config.settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.settings.SECRET_KEY, algorithm=config.settings.ALGORITHM)
    return encoded_jwt


def verify_admin_token(request: Request) -> dict:
    """Verify JWT token from cookie and return payload."""
    token = request.cookies.get("admin_token")

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(token, config.settings.SECRET_KEY, algorithms=[config.settings.ALGORITHM])
        if not payload.get("is_admin"):
            raise HTTPException(status_code=403, detail="Not authorized")
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def is_admin_phone(phone: str) -> bool:
    """Check whether a canonical phone number belongs to an administrator."""
    from electionpoll.core.sanitization import normalize_phone

    allowed = set()
    for candidate in config.settings.ADMIN_PHONES:
        try:
            allowed.add(normalize_phone(candidate))
        except ValueError:
            continue
    return phone in allowed
