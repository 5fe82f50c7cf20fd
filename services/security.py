"""Password hashing for user accounts."""

from __future__ import annotations

from argon2 import PasswordHasher, exceptions as argon_exc

MIN_PASSWORD_LENGTH = 6

ph = PasswordHasher()


def validate_password(plain_text: str) -> None:
    if not isinstance(plain_text, str) or len(plain_text) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def hash_password(plain_text: str) -> str:
    validate_password(plain_text)
    return ph.hash(plain_text)


def verify_password(plain_text: str, hashed: str) -> bool:
    """Check ``plain_text`` against a stored Argon2 hash; never raises."""
    if not plain_text or not hashed:
        return False

    try:
        return ph.verify(hashed, plain_text)
    except (argon_exc.VerificationError, argon_exc.InvalidHash):
        return False


def needs_rehash(hashed: str) -> bool:
    return ph.check_needs_rehash(hashed)
