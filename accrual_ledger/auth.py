"""
auth.py - Password hashing and credential checks

Hashes are bcrypt strings stored opaquely on User.password_hash. A user with
an empty hash (a chat player) can never log in.
"""

from __future__ import annotations

import bcrypt

from .core import ValidationError


DEFAULT_BCRYPT_ROUNDS = 12

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 4


def validate_credentials(username: str, password: str) -> str:
    """
    Check the shape of a registration and return the stripped username.

    Raises:
        ValidationError: Username shorter than 3 or password shorter than 4 characters
    """
    username = (username or "").strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError(f"username must be at least {MIN_USERNAME_LENGTH} characters")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    return username


def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Hash a password with bcrypt at the given cost factor (4..31)."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    True if password matches the bcrypt hash.

    An empty or malformed hash never matches.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False
