from __future__ import annotations

import bcrypt

from app.core.config import get_settings


# bcrypt only reads the first 72 bytes of a password.
_MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_MAX_PASSWORD_BYTES]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("ascii")


def verify_password(password: str, encoded: str) -> bool:
    try:
        return bcrypt.checkpw(_encode(password), encoded.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        return False
