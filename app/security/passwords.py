"""
bcrypt password hashing.

Passwords are SHA-256 pre-hashed so bcrypt's 72-byte input limit never
silently truncates a long passphrase.
"""

from __future__ import annotations

import hashlib

import bcrypt

MIN_PASSWORD_LENGTH = 8


def _prehash(plain: str) -> bytes:
    return hashlib.sha256(plain.encode("utf-8")).hexdigest().encode()


def hash_password(plain: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_prehash(plain), hashed.encode())
    except ValueError:
        # Malformed hash in storage.
        return False
