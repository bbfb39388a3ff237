"""Request bodies for the cryptouser API.

Field names are the wire names (camelCase) used by existing clients.
Payload fields are typed ``Any``: they are required to be present, but any
JSON value, null included, is stored as-is.

Strings must be encodable as UTF-8: JSON allows a lone surrogate escape such
as "\\ud800", which can be neither fingerprinted nor written to disk.

Validation failures surface as HTTP 400 (see the RequestValidationError
handler in cryptouser/main.py), before any limiter or store access.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, field_validator

from cryptouser.store import is_valid_id


class IdentityRequest(BaseModel):
    """Body for get_public, get_protected, and delete_user."""

    id: str

    @field_validator("id")
    @classmethod
    def _id_charset(cls, value: str) -> str:
        if not is_valid_id(value):
            raise ValueError("id must be one or more lowercase letters or digits")
        return value


class UserDataRequest(IdentityRequest):
    """Body for create_user and update_user.

    accessKey is the (new) access key; it is fingerprinted before storage and
    never echoed back.
    """

    accessKey: str
    publicData: Any
    protectedData: Any

    @field_validator("accessKey", "publicData", "protectedData")
    @classmethod
    def _utf8_encodable(cls, value: Any) -> Any:
        try:
            json.dumps(value, ensure_ascii=False).encode("utf-8")
        except UnicodeEncodeError:
            raise ValueError("strings must not contain unpaired surrogates") from None
        return value
