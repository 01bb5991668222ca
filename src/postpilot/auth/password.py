"""Password hashing utilities.

Learn: Uses bcrypt for one-way password hashing. bcrypt salts every hash
and is deliberately slow; the work factor comes from settings so tests can
turn it down. Passwords are truncated to 72 bytes (bcrypt's limit).
"""

import bcrypt

from postpilot.config import settings


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with bcrypt. The result starts with "$2b$"."""
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against its bcrypt hash. Never raises."""
    try:
        pw_bytes = password.encode("utf-8")[:72]
        return bcrypt.checkpw(pw_bytes, password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False
