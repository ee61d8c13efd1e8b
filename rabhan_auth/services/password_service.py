import re
import secrets
import string

import bcrypt

from rabhan_auth.services.errors import WeakPassword

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt ignores anything longer
SPECIAL_CHARACTERS = "@$!%*?&"

_TOKEN_ALPHABET = string.ascii_letters + string.digits

_STRENGTH_LABELS = {
    0: "weak",
    1: "weak",
    2: "weak",
    3: "fair",
    4: "fair",
    5: "good",
    6: "good",
    7: "strong",
    8: "very-strong",
}


def password_policy_errors(password: str) -> list[str]:
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not (
        re.search(r"[a-z]", password)
        and re.search(r"[A-Z]", password)
        and re.search(r"\d", password)
        and any(char in SPECIAL_CHARACTERS for char in password)
    ):
        errors.append(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            f"one number, and one special character ({SPECIAL_CHARACTERS})"
        )
    if " " in password:
        errors.append("Password cannot contain spaces")
    return errors


def validate_password(password: str) -> None:
    errors = password_policy_errors(password)
    if errors:
        raise WeakPassword(errors)


def check_password_strength(password: str) -> dict:
    score = 0
    suggestions = []

    if len(password) >= 8:
        score += 1
    if len(password) >= 12:
        score += 1
    if len(password) >= 16:
        score += 1
    else:
        suggestions.append("Use at least 16 characters for better security")

    for pattern, hint in (
        (r"[a-z]", "Add lowercase letters"),
        (r"[A-Z]", "Add uppercase letters"),
        (r"\d", "Add numbers"),
    ):
        if re.search(pattern, password):
            score += 1
        else:
            suggestions.append(hint)

    if any(char in SPECIAL_CHARACTERS for char in password):
        score += 1
    else:
        suggestions.append("Add special characters")

    if not re.search(r"(.)\1{2,}", password):
        score += 1
    else:
        suggestions.append("Avoid repeated characters")

    return {"score": score, "strength": _STRENGTH_LABELS.get(score, "weak"), "suggestions": suggestions}


class PasswordHasher:
    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False


def generate_secure_token(length: int = 32) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))
