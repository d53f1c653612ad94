import hashlib
import re
import secrets

from passlib.context import CryptContext

from config.constants import PASSWORD_MIN_LENGTH

# bcrypt configuration
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto"
)

# bcrypt hard limit
MAX_BCRYPT_BYTES = 72

PASSWORD_POLICY = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def hash_password(password: str) -> str:
    """
    Hash a password safely using bcrypt.
    Enforces bcrypt 72-byte limit.
    """
    if len(password.encode("utf-8")) > MAX_BCRYPT_BYTES:
        raise ValueError("Password too long (max 72 bytes)")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify password safely.
    Never lets bcrypt crash, even with bad legacy hashes.
    """
    if len(plain_password.encode("utf-8")) > MAX_BCRYPT_BYTES:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception:
        return False


def check_password_policy(password: str) -> str:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_BCRYPT_BYTES:
        raise ValueError(f"Password must be at most {MAX_BCRYPT_BYTES} bytes long")
    if not PASSWORD_POLICY.match(password):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    return password


# -------------------------------
# Password reset tokens
# -------------------------------

def generate_reset_token() -> tuple[str, str]:
    """Returns (raw_token, sha256_hash). Only the hash is stored."""
    raw = secrets.token_hex(20)
    return raw, hash_reset_token(raw)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
