from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4
import hmac
import secrets

from jose import JWTError, jwt

from restohub.core.config import settings

OTP_LENGTH = 6


class TokenType(str, Enum):
    ACCESS = "access"
    STAFF_INVITATION = "staff_invitation"


def create_access_token(subject: str, extra_claims: Mapping[str, Any] | None = None) -> str:
    """Issue an access token; production tokens come from the auth service."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {
        "sub": subject,
        "exp": expire,
        "token_type": TokenType.ACCESS.value,
        "jti": str(uuid4()),
    }
    if extra_claims:
        to_encode.update(extra_claims)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if "token_type" not in payload:
        raise ValueError("Invalid token payload")
    return payload


def create_staff_invitation_token(store_id: str, email: str, role: str) -> str:
    """Signed invitation carrying everything needed to accept it; nothing is stored."""
    expire = datetime.now(timezone.utc) + timedelta(hours=settings.staff_invitation_expire_hours)
    to_encode = {
        "sub": email,
        "store_id": store_id,
        "role": role,
        "exp": expire,
        "token_type": TokenType.STAFF_INVITATION.value,
        "jti": str(uuid4()),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_staff_invitation_token(token: str) -> dict[str, Any]:
    payload = decode_token(token)
    if payload["token_type"] != TokenType.STAFF_INVITATION.value:
        raise ValueError("Not an invitation token")
    return payload


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Numeric one-time code from the OS CSPRNG, always ``length`` digits."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def otp_matches(expected: str, supplied: str) -> bool:
    return hmac.compare_digest(expected.encode(), (supplied or "").strip().encode())
