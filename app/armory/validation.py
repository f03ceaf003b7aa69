import re

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
SPECIAL_CHARS = "!@#$%^&*()_+=[]{};':\"\\|,.<>/?~-"
MIN_PASSWORD_LENGTH = 8


def is_valid_email(email: str | None) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def password_error(password: str | None) -> str | None:
    """Return the first failing password rule, or None when the password is acceptable."""
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter"
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter"
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one number"
    if not any(c in SPECIAL_CHARS for c in password):
        return "Password must contain at least one special character"
    return None
