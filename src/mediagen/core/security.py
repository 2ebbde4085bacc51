"""Password hashing (Argon2id) and login lockout."""

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from mediagen.app.config import get_settings

_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def calculate_lockout_duration(failed_attempts: int) -> int:
    """Lockout seconds after `failed_attempts` consecutive failures.

    Zero below the threshold, then lockout_base doubling per extra failure,
    capped at lockout_max. With defaults: 5 -> 30s, 6 -> 60s, 11+ -> 1800s.
    """
    security = get_settings().security
    if failed_attempts < security.lockout_threshold:
        return 0

    exponent = failed_attempts - security.lockout_threshold
    return int(min(security.lockout_base * (2**exponent), security.lockout_max))
