"""Security utilities: JWT token management and API key hashing."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

import jwt
from jwt.exceptions import PyJWTError


def create_access_token(
    data: dict,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 60,
) -> str:
    """Create a JWT access token. Callers put the tenant in ``data["tenant_id"]``."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_access_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
) -> dict | None:
    """Decode and validate a JWT token. Returns None on failure."""
    try:
        return jwt.decode(token, secret_key, algorithms=[algorithm])
    except PyJWTError:
        return None


def hash_api_key(api_key: str) -> str:
    """SHA-256 hex digest used to store and look up API keys."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    """Generate a new API key. Returns (raw_key, key_hash, key_prefix)."""
    raw = f"wpk_{secrets.token_urlsafe(32)}"
    return raw, hash_api_key(raw), raw[:8]
