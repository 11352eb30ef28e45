import hashlib
import hmac
import secrets

from servicehub.models import UserRecord

MIN_PASSWORD_LENGTH = 6
VERIFICATION_CODE_DIGITS = 6


def make_salt() -> str:
    return secrets.token_hex(16)


def hash_password(salt: str, password: str) -> str:
    return hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()


def password_is_acceptable(password: str) -> bool:
    return len(password) >= MIN_PASSWORD_LENGTH


def set_password(user: UserRecord, password: str) -> bool:
    if not password_is_acceptable(password):
        return False
    salt = make_salt()
    user.salt = salt
    user.password_hash = hash_password(salt, password)
    return True


def check_password(user: UserRecord, password: str) -> bool:
    if not user.salt or not user.password_hash:
        return False
    expected = hash_password(user.salt, password)
    return hmac.compare_digest(expected, user.password_hash)


def generate_verification_code() -> str:
    upper = 10**VERIFICATION_CODE_DIGITS
    return str(secrets.randbelow(upper)).zfill(VERIFICATION_CODE_DIGITS)


def codes_match(expected: str, supplied: str) -> bool:
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))
