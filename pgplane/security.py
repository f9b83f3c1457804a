from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Dict, Optional

from argon2 import PasswordHasher
from argon2 import exceptions as argon2_exceptions

from pgplane.errors import PermissionDeniedError

SESSION_COOKIE_NAME = "pgplane_session"

ROLE_VIEWER = "VIEWER"
ROLE_OPERATOR = "OPERATOR"
ROLE_ADMIN = "ADMIN"
ROLE_OWNER = "OWNER"
ROLE_LEVELS: Dict[str, int] = {
    ROLE_VIEWER: 1,
    ROLE_OPERATOR: 2,
    ROLE_ADMIN: 3,
    ROLE_OWNER: 4,
}

_ARGON2_HASHER = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=1,
    hash_len=32,
    salt_len=16,
)


@dataclass(frozen=True)
class Actor:
    user_id: Optional[str]
    username: str
    role: str


def has_permission(role: str, minimum_role: str) -> bool:
    if minimum_role not in ROLE_LEVELS:
        raise ValueError(f"unknown role: {minimum_role}")
    level = ROLE_LEVELS.get(role)
    if level is None:
        return False
    return level >= ROLE_LEVELS[minimum_role]


def ensure_permission(actor: Actor, minimum_role: str) -> None:
    if not has_permission(actor.role, minimum_role):
        raise PermissionDeniedError(f"Insufficient permissions: {minimum_role} role required")


def hash_password(password: str) -> str:
    return _ARGON2_HASHER.hash(password)


def verify_password(password: str, encoded_hash: str) -> bool:
    if not encoded_hash:
        return False
    try:
        return _ARGON2_HASHER.verify(encoded_hash, password)
    except (argon2_exceptions.VerifyMismatchError, argon2_exceptions.InvalidHashError):
        return False


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str, secret_key: str) -> bytes:
    return hmac.new(secret_key.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256).digest()


def create_session_token(
    username: str,
    secret_key: str,
    *,
    ttl_seconds: int,
    now: Optional[int] = None,
) -> str:
    issued_at = now if now is not None else int(time.time())
    payload = {"u": username, "iat": issued_at, "exp": issued_at + ttl_seconds}
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    payload_b64 = _b64url_encode(payload_json)
    return f"{payload_b64}.{_b64url_encode(_sign(payload_b64, secret_key))}"


def decode_session_token(
    token: str, secret_key: str, *, now: Optional[int] = None
) -> Optional[str]:
    try:
        payload_b64, signature_b64 = token.split(".", 1)
        actual_signature = _b64url_decode(signature_b64)
    except (ValueError, TypeError):
        return None

    if not hmac.compare_digest(actual_signature, _sign(payload_b64, secret_key)):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_b64))
        username = payload["u"]
        expires_at = int(payload["exp"])
    except (KeyError, ValueError, TypeError, json.JSONDecodeError):
        return None

    if not isinstance(username, str) or not username:
        return None
    current = now if now is not None else int(time.time())
    if expires_at < current:
        return None
    return username
