"""
UI Boundary Safety Module.

Object keys come from the bucket listing verbatim. They are arbitrary
UTF-8 and may hold control characters or lone surrogates (from percent-
decoded keys), which break HTML rendering or JSON encoding.

Sanitization here is LOSSY and must ONLY be applied at presentation
boundaries. Items keep their raw keys so URL minting still addresses the
real object.
"""

import re

# C0/C1 control characters (tabs and newlines included) and lone surrogates
_UNSAFE_RE = re.compile(r"[\x00-\x1f\x7f-\x9f\ud800-\udfff]")


def ensure_utf8_display(value: str | None) -> str:
    """
    UTF-8 safe string for rendering.

    - None -> ""
    - Lone surrogates -> U+FFFD
    - Control characters -> U+FFFD
    """
    if value is None:
        return ""

    return _UNSAFE_RE.sub("�", value)


def display_name(key: str | None, max_length: int = 120) -> str:
    """
    Label for an object key: the last path segment, sanitized and truncated
    in the middle so the extension stays visible.
    """
    name = ensure_utf8_display(key).rsplit("/", 1)[-1]
    if not name:
        return "untitled"
    if len(name) <= max_length:
        return name
    head = (max_length - 1) // 2
    tail = max_length - 1 - head
    return f"{name[:head]}…{name[-tail:]}"
