"""Input sanitization utilities."""
import re
from typing import Optional

from electionpoll.core.errors import ValidationFailed


# Maximum length constraints for security
MAX_QUESTION_LENGTH = 255
MAX_OPTION_TEXT_LENGTH = 255
MAX_DISPLAY_NAME_LENGTH = 255

# Bangladeshi mobile numbers: 01[3-9] followed by 8 digits, optional 880 prefix
_PHONE_RE = re.compile(r'^(?:\+?880|0)(1[3-9]\d{8})$')
_COLOR_RE = re.compile(r'^#[0-9A-Fa-f]{6}$')


def sanitize_text(text: str, max_length: Optional[int] = None, strip_html: bool = True) -> str:
    """
    Sanitize text input to prevent XSS attacks.

    Args:
        text: The input text to sanitize
        max_length: Optional maximum length to enforce
        strip_html: Whether to strip HTML tags (default True)

    Returns:
        Sanitized text with HTML tags removed and whitespace normalized

    Raises:
        ValidationFailed: If text exceeds max_length or contains dangerous patterns
    """
    if not isinstance(text, str):
        raise ValidationFailed("Input must be a string")

    # Strip leading/trailing whitespace
    sanitized = text.strip()

    # Enforce maximum length before processing to prevent length-based attacks
    if max_length and len(sanitized) > max_length:
        raise ValidationFailed(f"Input exceeds maximum length of {max_length} characters")

    if strip_html:
        sanitized = re.sub(r'<[^>]*>', '', sanitized)

    # Reject inputs that still contain HTML-like patterns after stripping
    if '<' in sanitized or '>' in sanitized:
        raise ValidationFailed("Input contains invalid HTML-like patterns")

    # Normalize internal whitespace (replace multiple spaces with single space)
    sanitized = re.sub(r'\s+', ' ', sanitized)

    return sanitized


def sanitize_question(question: str) -> str:
    """Sanitize a poll question; empty questions are rejected."""
    sanitized = sanitize_text(question, max_length=MAX_QUESTION_LENGTH)

    if not sanitized:
        raise ValidationFailed("Poll question cannot be empty")

    return sanitized


def sanitize_option_text(text: str) -> str:
    sanitized = sanitize_text(text, max_length=MAX_OPTION_TEXT_LENGTH)

    if not sanitized:
        raise ValidationFailed("Option text cannot be empty")

    return sanitized


def sanitize_display_name(name: Optional[str], default: str) -> str:
    if name is None:
        return default
    sanitized = sanitize_text(name, max_length=MAX_DISPLAY_NAME_LENGTH)
    return sanitized or default


def normalize_phone(phone: str) -> str:
    """
    Normalize a Bangladeshi mobile number to ``+8801XXXXXXXXX``.

    Accepts ``01XXXXXXXXX``, ``8801XXXXXXXXX`` and ``+8801XXXXXXXXX``, with
    spaces, hyphens and parentheses ignored.

    Raises:
        ValidationFailed: If the number is not a valid mobile number
    """
    if not isinstance(phone, str):
        raise ValidationFailed("Phone number must be a string")

    compact = re.sub(r'[\s\-()]', '', phone)
    match = _PHONE_RE.match(compact)
    if not match:
        raise ValidationFailed("Invalid phone number")

    return f"+880{match.group(1)}"


def mask_phone(phone: str) -> str:
    """Hide the middle digits of a phone number: ``+8801*****5678``."""
    if len(phone) <= 8:
        return "*" * len(phone)
    return f"{phone[:5]}{'*' * (len(phone) - 9)}{phone[-4:]}"


def validate_code_format(code: str, length: int) -> str:
    """
    Validate a verification code before it reaches the database.

    Raises:
        ValidationFailed: If the code is not ``length`` digits
    """
    if not isinstance(code, str):
        raise ValidationFailed("Code must be a string")

    code = code.strip()

    if len(code) != length or not code.isdigit():
        raise ValidationFailed(f"Code must be {length} digits")

    return code


def validate_color(color: Optional[str]) -> Optional[str]:
    if color is None:
        return None
    color = color.strip()
    if not _COLOR_RE.match(color):
        raise ValidationFailed("Color must be a hex value like #C8102E")
    return color.upper()
