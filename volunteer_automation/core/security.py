"""Security and authentication helpers for role-scoped JWT auth."""
from __future__ import annotations

import binascii
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, get_args

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from volunteer_automation.config import settings
from volunteer_automation.schemas.auth import Role

ALGORITHM = "HS256"
TOKEN_TTL_MINUTES = 60 * 12
AUTH_SCHEME = HTTPBearer(auto_error=False)
KNOWN_ROLES = set(get_args(Role))


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _secret_key() -> str:
    return settings.secret_key.get_secret_value()


def hash_password(password: str, salt_hex: str, iterations: int = 210000) -> str:
    """Create pbkdf2_sha256 hash string."""
    dk = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), iterations
    )
    digest_hex = binascii.hexlify(dk).decode("ascii")
    return f"pbkdf2_sha256${iterations}${salt_hex}${digest_hex}"


def verify_password(password: str, encoded_hash: str) -> bool:
    """Verify pbkdf2_sha256 hash format: pbkdf2_sha256$iters$salt_hex$digest_hex."""
    try:
        algorithm, iter_str, salt_hex, digest_hex = encoded_hash.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    try:
        expected = hash_password(password, salt_hex=salt_hex, iterations=int(iter_str))
    except ValueError:
        return False
    return hmac.compare_digest(expected, encoded_hash)


def create_access_token(subject: str, extra: Dict[str, Any] | None = None) -> str:
    payload: Dict[str, Any] = {
        "sub": subject,
        "iat": int(now_utc().timestamp()),
        "exp": int((now_utc() + timedelta(minutes=TOKEN_TTL_MINUTES)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _secret_key(), algorithm=ALGORITHM)


def create_user_token(user_id: str, email: str, name: str, role: str) -> str:
    return create_access_token(email, {"uid": user_id, "name": name, "role": role})


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
) -> Dict[str, Any]:
    if creds is None or not creds.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
        )
    try:
        payload = decode_token(creds.credentials)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token"
        )

    email = str(payload.get("sub", "")).strip().lower()
    user_id = str(payload.get("uid", "")).strip()
    role = payload.get("role")
    if not email or not user_id or role not in KNOWN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject"
        )
    return {
        "id": user_id,
        "email": email,
        "name": payload.get("name") or email,
        "role": role,
    }


def require_roles(*roles: str) -> Callable[..., Dict[str, Any]]:
    """Dependency factory that admits only the given roles."""
    allowed = set(roles)

    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency


# Workflow automation is a staff tool.
require_staff = require_roles("founder", "intern")
