from __future__ import annotations

import re
import secrets
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .config import get_settings

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a recruiter bearer token issued by the auth service. None when invalid."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def create_access_token(subject: str, email: Optional[str] = None, **claims: Any) -> str:
    """Used by tooling and tests, production tokens come from the auth service."""
    settings = get_settings()
    to_encode: Dict[str, Any] = {"sub": subject, **claims}
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def sanitize_text_field(value: Optional[str]) -> Optional[str]:
    """Strip control characters and surrounding whitespace. The text is stored unescaped."""
    if value is None:
        return None
    return _CONTROL_CHARS.sub("", value).strip()


def generate_share_token() -> str:
    return secrets.token_urlsafe(24)
