from __future__ import annotations

import hashlib
import hmac
import secrets

_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LENGTH = 64


class PasswordHashError(ValueError):
    """Raised when a stored password hash is not in ``<hash>.<salt>`` format."""


def _derive(password: str, salt: str) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LENGTH,
    )


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    return f"{_derive(password, salt).hex()}.{salt}"


def verify_password(stored_hash: str, supplied_password: str) -> bool:
    hashed, _, salt = stored_hash.partition(".")
    if not hashed or not salt:
        raise PasswordHashError("Invalid stored hash format.")
    try:
        expected = bytes.fromhex(hashed)
    except ValueError as exc:
        raise PasswordHashError("Invalid stored hash format.") from exc

    candidate = _derive(supplied_password, salt)
    if len(candidate) != len(expected):
        return False
    return hmac.compare_digest(candidate, expected)
