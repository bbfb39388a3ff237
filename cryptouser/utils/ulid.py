"""ULID generation for request ids.

Every API request gets a 26-character ULID, returned in the X-Request-ID
response header and bound into the structlog context for that request.

Uses the `python-ulid` library (see pyproject.toml).
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: Crockford Base32 ULID, e.g. ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``.
    """
    return str(ULID())
