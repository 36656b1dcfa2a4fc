"""Design number formatting.

A design number is the short identifier stamped on a generated image.  It is
either typed by the operator or derived from the session's auto-design
counter, then prefixed according to the chosen format.
"""

import re
from enum import Enum

_WHITESPACE = re.compile(r"\s+")


class DesignNumberFormat(str, Enum):
    """Prefix templates offered for design numbers."""

    DES = "DES-XXXX"
    D = "D-XXXX"
    BARE = "XXXX"
    CUSTOM = "custom"


_PREFIXES = {
    DesignNumberFormat.DES.value: "DES-",
    DesignNumberFormat.D.value: "D-",
    DesignNumberFormat.BARE.value: "",
}


def format_number(raw: str, format: str, custom_prefix: str | None = "") -> str:
    """Format a raw design number for display.

    Internal whitespace runs become single hyphens before prefixing.

    Args:
        raw: Number as typed, e.g. ``"12 34"``.
        format: One of the :class:`DesignNumberFormat` values.  Unknown
            values fall back to the ``DES-`` prefix.
        custom_prefix: Prefix used by the ``custom`` format.

    Returns:
        The display string, e.g. ``"DES-12-34"``.

    Examples:
        >>> format_number("12 34", "DES-XXXX", "")
        'DES-12-34'
        >>> format_number("7", "custom", "SKU-")
        'SKU-7'
    """
    number = _WHITESPACE.sub("-", raw)
    fmt = format.value if isinstance(format, DesignNumberFormat) else format

    if fmt == DesignNumberFormat.CUSTOM.value:
        return f"{custom_prefix or ''}{number}"
    return f"{_PREFIXES.get(fmt, 'DES-')}{number}"


def auto_number(counter: int) -> str:
    """Zero-pad *counter* to four digits; wider values are kept whole."""
    return f"{counter:04d}"
