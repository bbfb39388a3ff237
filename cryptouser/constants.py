"""Shared constants for cryptouser.

Wire-level names, on-disk conventions, and default limiter quotas live here.
No magic numbers in other modules: import from here.
"""

import re

# ─── API ──────────────────────────────────────────────────────────────────────

# Mount point of every API route. Clients discover the service under the
# domain's well-known path.
API_PREFIX: str = "/.well-known/cryptouser"

# Reported by /get_version
API_VERSION: str = "0.1"

# Request body cap (100 KiB, the JSON body limit the protocol has always had).
# HTTP 413 is returned before any handler runs.
MAX_REQUEST_BODY_BYTES: int = 102_400

# ─── Identities ───────────────────────────────────────────────────────────────

# Lowercase ASCII letters and digits only. Keeps ids safe as filenames and
# disjoint from the temp-file suffix below.
ID_PATTERN: re.Pattern[str] = re.compile(r"^[a-z0-9]+$")

# ─── Record store layout ──────────────────────────────────────────────────────

# <id>.json holds the committed record
RECORD_EXTENSION: str = ".json"

# <id>.json~ is the staging file for atomic replace
TEMP_SUFFIX: str = "~"

# ─── Credential fingerprints ──────────────────────────────────────────────────

# BLAKE2b output size in bytes (256-bit fingerprint)
FINGERPRINT_DIGEST_SIZE: int = 32

# ─── Rate limiter defaults ────────────────────────────────────────────────────

# Replenishment cadence: one window unit per tracked key per tick
LIMITER_TICK_SECONDS: float = 60.0

# (capacity, window_minutes) per limiter
CREATE_USER_LIMIT: tuple[int, int] = (50, 1)
GET_PUBLIC_LIMIT: tuple[int, int] = (50, 1)
AUTH_IP_LIMIT: tuple[int, int] = (50, 1)
AUTH_USER_LIMIT: tuple[int, int] = (5, 10)
