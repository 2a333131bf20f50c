"""
Input validation and sanitization utilities.

Answers are never passed through these: grading compares the submitted
string exactly as received.
"""

import html
import re
from typing import Optional


class PasswordValidator:
    """
    Password strength validator following OWASP guidelines.
    """

    MIN_LENGTH = 8
    MAX_LENGTH = 128

    COMMON_PASSWORDS = {
        "password",
        "12345678",
        "password123",
        "qwerty123",
        "abc123456",
        "iqtest123",
        "letmein",
    }

    @classmethod
    def validate(cls, password: str) -> tuple[bool, Optional[str]]:
        """
        Validate password strength.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if len(password) < cls.MIN_LENGTH:
            return False, f"Password must be at least {cls.MIN_LENGTH} characters long"

        if len(password) > cls.MAX_LENGTH:
            return False, f"Password must not exceed {cls.MAX_LENGTH} characters"

        if password.lower() in cls.COMMON_PASSWORDS:
            return False, "Password is too common. Please choose a stronger password"

        if not re.search(r"[a-zA-Z]", password):
            return False, "Password must contain at least one letter"

        if not re.search(r"\d", password):
            return False, "Password must contain at least one digit"

        return True, None


class UsernameValidator:
    MIN_LENGTH = 3
    MAX_LENGTH = 50
    PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

    @classmethod
    def validate(cls, username: str) -> tuple[bool, Optional[str]]:
        if not cls.MIN_LENGTH <= len(username) <= cls.MAX_LENGTH:
            return (
                False,
                f"Username must be {cls.MIN_LENGTH}-{cls.MAX_LENGTH} characters long",
            )
        if not cls.PATTERN.match(username):
            return (
                False,
                "Username may only contain letters, digits, dots, hyphens and underscores",
            )
        return True, None


class StringSanitizer:
    """
    String sanitization for free text stored and echoed back to clients.
    """

    # Control characters to strip (except newlines, tabs, carriage returns)
    CONTROL_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

    @classmethod
    def sanitize_string(cls, value: str, allow_html: bool = False) -> str:
        """Strip control characters and surrounding whitespace; escape HTML unless allowed."""
        value = cls.CONTROL_CHARS_PATTERN.sub("", value).strip()
        if not allow_html:
            value = html.escape(value)
        return value


class EmailValidator:
    """
    Email normalization utilities.
    """

    @classmethod
    def normalize_email(cls, email: str) -> str:
        return email.lower().strip().replace(" ", "")


class CountryCodeValidator:
    PATTERN = re.compile(r"^[A-Za-z]{2}$")

    @classmethod
    def normalize(cls, country: str) -> str:
        """
        Upper-case an ISO 3166-1 alpha-2 code.

        Raises:
            ValueError: if the value is not two letters
        """
        country = country.strip()
        if not cls.PATTERN.match(country):
            raise ValueError("Country must be a two-letter ISO code")
        return country.upper()
