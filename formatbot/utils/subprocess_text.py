"""Normalize subprocess output that may be bytes, str or None."""

from __future__ import annotations

from typing import Optional, Union


def to_text(value: Optional[Union[bytes, str]]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def tail_lines(text: str, limit: int = 20) -> str:
    """Return the last `limit` lines of text, for logs and reports."""
    lines = (text or "").rstrip("\n").splitlines()
    return "\n".join(lines[-limit:])
