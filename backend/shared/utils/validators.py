"""
Input validation helpers shared by services.
"""

import re


def escape_like_pattern(value: str) -> str:
    """
    Escape special characters in LIKE patterns.

    SQL LIKE uses % and _ as wildcards. Escaping them prevents a search
    term from turning into a full table scan pattern.
    """
    if not value:
        return value

    # Escape the escape character first, then the wildcards
    value = value.replace("\\", "\\\\")
    value = value.replace("%", "\\%")
    value = value.replace("_", "\\_")
    return value


def sanitize_search_term(term: str | None, max_length: int = 100) -> str:
    """
    Sanitize search term for safe use in queries.

    Trims whitespace, limits length, and strips control characters.
    """
    if not term:
        return ""

    term = term.strip()

    if len(term) > max_length:
        term = term[:max_length]

    term = re.sub(r"[\x00-\x1f\x7f-\x9f]", "", term)

    return term


def validate_quantity(quantity: int, min_val: int = 1, max_val: int = 99) -> int:
    """
    Validate quantity is within acceptable range.

    Raises:
        ValueError: If quantity is out of range.
    """
    if quantity < min_val:
        raise ValueError(f"Minimum quantity is {min_val}")
    if quantity > max_val:
        raise ValueError(f"Maximum quantity is {max_val}")
    return quantity


def normalize_promo_code(code: str | None) -> str | None:
    """Promo codes are matched case-insensitively and stored upper-case."""
    if not code:
        return None
    code = code.strip().upper()
    return code or None
