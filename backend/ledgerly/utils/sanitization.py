"""
Input sanitization utilities for API payloads and extracted documents.
Provides functions to clean and validate string inputs.
"""

import re
from typing import Any, Optional

_CONTROL_CHARS = re.compile(r'[\x00-\x1F\x7F]')
# Keeps \t \n \r, which are meaningful in extracted invoice text
_CONTROL_CHARS_KEEP_WS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F]')


def sanitize_string(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    # Remove leading/trailing whitespace and dangerous characters
    value = value.strip()
    # Remove control characters
    value = _CONTROL_CHARS.sub('', value)
    # Escape HTML
    value = value.replace('<', '&lt;').replace('>', '&gt;')
    return value


def strip_control_chars(value: str) -> str:
    """Drop NUL and other control characters but keep tabs and newlines."""
    return _CONTROL_CHARS_KEEP_WS.sub('', value.replace('\u0000', ''))


def deep_sanitize(obj: Any) -> Any:
    """Recursively strip control characters from every string in ``obj``."""
    if isinstance(obj, dict):
        return {k: deep_sanitize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [deep_sanitize(v) for v in obj]
    if isinstance(obj, str):
        return strip_control_chars(obj)
    return obj
