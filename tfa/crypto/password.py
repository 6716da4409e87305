"""Password verification for the configured principal."""

import hmac

import argon2

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)

ARGON2_PREFIX = "$argon2"


def hash_password(password: str) -> str:
    """Hash a password using Argon2id, for AUTH_ACCESS_PASSWORD."""
    return _hasher.hash(password)


def verify_password(plain: str, configured: str) -> bool:
    """Check plain against an Argon2 hash or, failing that, a literal secret."""
    if not plain or not configured:
        return False
    if not configured.startswith(ARGON2_PREFIX):
        return hmac.compare_digest(plain.encode(), configured.encode())
    try:
        return _hasher.verify(configured, plain)
    except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError):
        return False
