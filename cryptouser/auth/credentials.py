"""Access-key fingerprints and constant-time verification.

The access key a client chooses at registration is never stored. The record
keeps only its fingerprint: an unkeyed BLAKE2b-256 digest of the key's UTF-8
bytes (byte-identical to libsodium's ``crypto_generichash(32, key)``),
encoded as unpadded URL-safe base64 so existing data files stay readable.

Non-negotiables:
  - An empty or absent access key never verifies, whatever is stored.
  - Digest comparison goes through hmac.compare_digest, never ``==``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional

from cryptouser.constants import FINGERPRINT_DIGEST_SIZE


def _digest(secret: str) -> bytes:
    return hashlib.blake2b(secret.encode("utf-8"), digest_size=FINGERPRINT_DIGEST_SIZE).digest()


def _encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode(text: str) -> bytes:
    """Decode an unpadded URL-safe base64 fingerprint.

    Raises:
        ValueError: If the stored value is not valid base64.
    """
    padded = text + "=" * (-len(text) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def fingerprint(secret: str) -> str:
    """Return the storable fingerprint of an access key."""
    return _encode(_digest(secret))


def verify(supplied: Optional[str], stored_fingerprint: str) -> bool:
    """Check a supplied access key against a stored fingerprint.

    Args:
        supplied:           Access key presented by the caller (Authorization header).
        stored_fingerprint: ``accessKeyHash`` value from the record.

    Returns:
        True only if ``supplied`` is non-empty and hashes to the stored digest.

    Raises:
        ValueError: If ``stored_fingerprint`` is corrupt (not base64).
    """
    if not supplied:
        return False
    expected = _decode(stored_fingerprint)
    return hmac.compare_digest(_digest(supplied), expected)
