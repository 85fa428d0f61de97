"""
Encoding helpers shared by proofs, keys and the SD-JWT codec.
"""

from __future__ import annotations

import base64
import json
from typing import Any


def canonicalize_json(data: Any) -> str:
    """Canonicalize JSON according to JCS (RFC 8785).

    Args:
        data: JSON-compatible value to canonicalize.

    Returns:
        Canonical JSON string.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def base64url_encode(data: bytes) -> str:
    """Encode bytes as base64url without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(data: str) -> bytes:
    """Decode base64url without padding.

    Args:
        data: Base64url encoded string.

    Returns:
        Decoded bytes.
    """
    # Add padding if needed
    padding = 4 - (len(data) % 4)
    if padding != 4:
        data += "=" * padding
    return base64.urlsafe_b64decode(data)
