"""Utility functions for the bearnotes core."""
import re

_MARKUP_TAG = re.compile(r"<[^>]*>")


def strip_markup(text: str) -> str:
    """Remove markup tags (``<b>``, ``<p class="x">``, ...) from text.

    Args:
        text: Note content that may contain HTML-like markup.

    Returns:
        The text with every ``<...>`` tag removed.
    """
    if not text:
        return ""
    return _MARKUP_TAG.sub("", text)


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)
