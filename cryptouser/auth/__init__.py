"""cryptouser request authorization package.

Public API:
  - fingerprint()       : storable BLAKE2b-256 fingerprint of an access key
  - verify()            : constant-time access key check
  - QuotaLimiter        : per-key sliding quota counter
  - LimiterSet          : the four limiters consulted by the API
  - Replenisher         : periodic tick task for a LimiterSet
  - get_client_key()    : coarsened remote address used as a limiter key
"""

from __future__ import annotations

from cryptouser.auth.client_key import client_key_for_address, get_client_key
from cryptouser.auth.credentials import fingerprint, verify
from cryptouser.auth.limiter import LimiterSet, QuotaLimiter, Replenisher

__all__ = [
    "fingerprint",
    "verify",
    "QuotaLimiter",
    "LimiterSet",
    "Replenisher",
    "client_key_for_address",
    "get_client_key",
]
