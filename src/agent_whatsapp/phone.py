"""Phone number and transport address helpers."""

import re

from .exceptions import InvalidDestinationError

_NON_DIGIT = re.compile(r"[^\d+]")
_TRANSPORT_SUFFIXES = re.compile(r"@(c\.us|g\.us|lid)$")

DEFAULT_SUFFIX = "@c.us"


def clean_number(raw: str) -> str:
    """
    Reduce a phone number to digits, keeping one leading '+'.

    Accepts human-readable input ("+1 (555) 123-4567") as well as a
    canonical transport address ("15551234567@c.us").

    Example:
        >>> clean_number("+1 (555) 123-4567")
        '+15551234567'
    """
    raw = _TRANSPORT_SUFFIXES.sub("", raw.strip())
    cleaned = _NON_DIGIT.sub("", raw)
    plus = cleaned.startswith("+")
    digits = cleaned.replace("+", "")
    return f"+{digits}" if plus else digits


def format_address(raw: str, suffix: str = DEFAULT_SUFFIX) -> str:
    """
    Convert a phone number to the transport's address format.

    Raises:
        InvalidDestinationError: If no digits remain after cleaning
    """
    digits = clean_number(raw).lstrip("+")
    if not digits:
        raise InvalidDestinationError(f"Invalid destination: {raw!r}")
    return f"{digits}{suffix}"


def sender_number(chat_id: str) -> str:
    """Turn an inbound chat id ("263789859332@c.us") into "+263789859332"."""
    return "+" + _TRANSPORT_SUFFIXES.sub("", chat_id).lstrip("+")
