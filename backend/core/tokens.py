import hashlib
import re
import secrets

from fastapi_users.password import PasswordHelper

password_helper = PasswordHelper()

PIN_PATTERN = re.compile(r"^\d{6}$")


def new_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def new_numeric_code(digits: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(digits))


def hash_token(token: str) -> str:
    # Tokens are high-entropy, a plain digest is enough for lookups.
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def hash_secret(value: str) -> str:
    """Slow hash for low-entropy secrets (PINs, OTP codes)."""
    return password_helper.hash(value)


def verify_secret(value: str, hashed: str) -> bool:
    if not value or not hashed:
        return False
    verified, _ = password_helper.verify_and_update(value, hashed)
    return verified


def is_valid_pin(pin: str) -> bool:
    return bool(pin) and PIN_PATTERN.match(pin) is not None
