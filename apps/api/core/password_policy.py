"""
Password Policy Validation

Applied when a member sets their password through the activation link.

Requirements:
- Minimum 8 characters
- Maximum 72 characters (bcrypt limit)
- At least 1 uppercase letter
- At least 1 digit
- At least 1 special character
- Not in common password blocklist
"""
import re
from typing import Dict, Tuple, List

# Common weak passwords to block (subset - add more as needed)
COMMON_PASSWORDS = {
    "password", "password1", "password123", "123456", "12345678", "1234567890",
    "qwerty", "qwerty123", "abc123", "letmein", "welcome", "monkey", "dragon",
    "master", "login", "admin", "admin123", "root", "toor", "pass", "test",
    "guest", "iloveyou", "princess", "sunshine", "football", "baseball",
    "passw0rd", "p@ssw0rd", "p@ssword", "trustno1", "starwars", "whatever",
    "welcome1!", "password1!", "coach", "coach123", "trainer", "training",
}

SPECIAL_CHARACTERS = r'[!@#$%^&*(),.?":{}|<>_\-+=\[\];\'\\/`~]'


def password_checks(password: str) -> Dict[str, bool]:
    """The four criteria shown to the member while typing."""
    return {
        "min_length": len(password) >= 8,
        "has_upper": re.search(r'[A-Z]', password) is not None,
        "has_number": re.search(r'\d', password) is not None,
        "has_special": re.search(SPECIAL_CHARACTERS, password) is not None,
    }


def password_strength(password: str) -> Tuple[int, str]:
    """Return (score 0-4, label). An empty password has no label."""
    score = sum(1 for ok in password_checks(password).values() if ok)
    if not password:
        return 0, ""
    if score <= 1:
        return score, "weak"
    if score <= 3:
        return score, "medium"
    return score, "strong"


def validate_password(password: str) -> Tuple[bool, List[str]]:
    """
    Validate password against security policy.

    Args:
        password: The password to validate

    Returns:
        Tuple of (is_valid, list_of_error_messages)
    """
    errors = []
    checks = password_checks(password)

    if not checks["min_length"]:
        errors.append("Password must be at least 8 characters")

    if len(password) > 72:
        errors.append("Password must not exceed 72 characters (bcrypt limit)")

    if not checks["has_upper"]:
        errors.append("Password must contain at least one uppercase letter")

    if not checks["has_number"]:
        errors.append("Password must contain at least one digit")

    if not checks["has_special"]:
        errors.append("Password must contain at least one special character (!@#$%^&*...)")

    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common, please choose a stronger password")

    return len(errors) == 0, errors


def get_password_requirements_text() -> str:
    """Return human-readable password requirements."""
    return """Password requirements:
• 8-72 characters
• At least one uppercase letter (A-Z)
• At least one digit (0-9)
• At least one special character (!@#$%^&*...)
• Must not be a commonly used password"""
