from __future__ import annotations

import hashlib
import secrets

import bcrypt

_MAX_BCRYPT_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    pw_bytes = password.encode("utf-8")
    if len(pw_bytes) > _MAX_BCRYPT_PASSWORD_BYTES:
        raise ValueError("password too long (bcrypt supports at most 72 bytes)")
    hashed = bcrypt.hashpw(pw_bytes, bcrypt.gensalt())
    return hashed.decode("utf-8")


def generate_access_token() -> str:
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    # Only the digest is stored; the plaintext is shown once at issue time.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
