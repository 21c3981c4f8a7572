import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

# 32 bytes -> 43 URL-safe base64 characters (256 bits of entropy)
TOKEN_BYTES = 32
TOKEN_PREFIX_LENGTH = 16
# Prefix characters safe to show in logs and admin listings
TOKEN_PREFIX_FRAGMENT = 6

# Argon2id: time_cost=3, memory_cost=64MB, parallelism=4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def generate_token_value() -> str:
    """Generate a fresh URL-safe download token from the OS CSPRNG."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def get_token_prefix(token: str) -> str:
    """Indexed lookup key. Unique across all tokens ever issued."""
    return token[:TOKEN_PREFIX_LENGTH]


def hash_token(token: str) -> str:
    """Hash a token using Argon2id."""
    return ph.hash(token)


def verify_token(token: str, token_hash: str) -> bool:
    """Verify a token against its Argon2id hash."""
    try:
        return ph.verify(token_hash, token)
    except (VerificationError, InvalidHashError):
        return False
