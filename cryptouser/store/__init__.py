"""cryptouser record store package.

Public API:
  - RecordStore          : file-per-identity store with atomic create/replace
  - InvalidIdError       : id outside [a-z0-9]+
  - RecordExistsError    : create() on an existing id
  - RecordNotFoundError  : update()/delete() on a missing id
"""

from __future__ import annotations

from cryptouser.store.records import (
    InvalidIdError,
    Record,
    RecordExistsError,
    RecordNotFoundError,
    RecordStore,
    decode_filename,
    encode_filename,
    is_valid_id,
)

__all__ = [
    "RecordStore",
    "Record",
    "InvalidIdError",
    "RecordExistsError",
    "RecordNotFoundError",
    "encode_filename",
    "decode_filename",
    "is_valid_id",
]
