import re
from typing import List

from passlib.context import CryptContext

from virtualqueue.core.exceptions import BadRequest

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MAX_PASSWORD_BYTES = 72
MIN_PASSWORD_LENGTH = 8

_SPECIAL_CHARS = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")
_COMMON_PATTERNS = re.compile(r"(123456|password|qwerty|abc123)", re.IGNORECASE)
_SEQUENCES = re.compile(
    r"(abcdef|bcdefg|cdefgh|defghi|efghij|fghijk|ghijkl|hijklm|ijklmn|jklmno|klmnop|lmnopq|"
    r"mnopqr|nopqrs|opqrst|pqrstu|qrstuv|rstuvw|stuvwx|tuvwxy|uvwxyz|12345|23456|34567|45678|56789)",
    re.IGNORECASE,
)
_REPEATS = re.compile(r"(.)\1{2,}")


def hash_password(password: str) -> str:
    """Hash password using bcrypt (safe wrapper)"""
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise BadRequest("Password is too long")

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify plain password against hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def password_validation_issues(password: str) -> List[str]:
    """Return every policy rule the password breaks; empty when it is acceptable."""
    issues: List[str] = []

    if not password or len(password) < MIN_PASSWORD_LENGTH:
        issues.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        return issues

    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        issues.append("Password is too long")
    if not re.search(r"[A-Z]", password):
        issues.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        issues.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        issues.append("Password must contain at least one number")
    if not _SPECIAL_CHARS.search(password):
        issues.append("Password must contain at least one special character")
    if _COMMON_PATTERNS.search(password):
        issues.append("Password contains a common pattern that is easily guessable")
    if _SEQUENCES.search(password):
        issues.append("Password contains a sequential pattern")
    if _REPEATS.search(password):
        issues.append("Password contains repeating characters")

    return issues
