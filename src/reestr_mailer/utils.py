"""Utility helpers shared across modules."""

from __future__ import annotations

from datetime import date, datetime
from email.header import decode_header

DATE_STAMP_FORMAT = "%Y.%m.%d"


def date_stamp(day: date | None = None) -> str:
    """Format a day as ``yyyy.MM.dd``; today when omitted."""
    return (day or date.today()).strftime(DATE_STAMP_FORMAT)


def format_received(value: datetime | None) -> str:
    """Human-readable receipt time for log lines."""
    if value is None:
        return "unknown date"
    return value.strftime("%d.%m.%Y, %H:%M:%S")


def to_text(value: bytes | str | None, encoding: str = "utf-8") -> str:
    """Decode IMAP byte strings, tolerating odd encodings."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(encoding, errors="replace")
    return value


def decode_mime_words(value: bytes | str | None) -> str:
    """Decode RFC 2047 encoded words such as ``=?utf-8?B?...?=`` in a header."""
    text = to_text(value)
    if not text:
        return ""
    decoded: list[str] = []
    for chunk, charset in decode_header(text):
        if isinstance(chunk, bytes):
            try:
                decoded.append(chunk.decode(charset or "utf-8", errors="replace"))
            except LookupError:
                decoded.append(chunk.decode("utf-8", errors="replace"))
        else:
            decoded.append(chunk)
    return "".join(decoded)
