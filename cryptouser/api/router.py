"""cryptouser identity endpoints: mounted under API_PREFIX.

Provides:
  POST     /get_version    : protocol version
  POST     /create_user    : register an id with an access key and both payloads
  POST     /get_public     : publicData for an id (no access key)
  POST     /get_protected  : protectedData for an id (access key required)
  POST     /update_user    : replace access key and both payloads (access key required)
  POST     /delete_user    : remove an id (access key required)
  GET|POST /get_users      : all registered ids

The current access key travels in the Authorization header, verbatim (no
scheme prefix). The new access key for create/update travels in the body.

Rate limiting (limiters live on app.state.limiters):
  - create_user, get_public: flat: check, then charge before doing the work,
    whatever the outcome. A duplicate create still costs quota.
  - get_protected, update_user, delete_user: failure-only: check both the
    client-address limiter (auth_ip) and the identity limiter (auth_user);
    charge both only when the access key is wrong. Correct keys are never
    throttled; guessing is throttled per source and per target.

Request ordering: body/header validation → store lookup (404) → limiter
check (429) → credential check (401) → mutation.

The stored fingerprint is never part of any response.
"""

from __future__ import annotations

from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from cryptouser.api.models import IdentityRequest, UserDataRequest
from cryptouser.auth.client_key import get_client_key
from cryptouser.auth.credentials import fingerprint, verify
from cryptouser.auth.limiter import LimiterSet
from cryptouser.constants import API_VERSION
from cryptouser.store import Record, RecordExistsError, RecordNotFoundError, RecordStore
from cryptouser.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["identity"])


# ─── Dependencies ─────────────────────────────────────────────────────────────


def get_store(request: Request) -> RecordStore:
    """FastAPI dependency: the RecordStore created by the app lifespan."""
    return request.app.state.store


def get_limiters(request: Request) -> LimiterSet:
    """FastAPI dependency: the LimiterSet created by the app lifespan."""
    return request.app.state.limiters


# ─── Helpers ──────────────────────────────────────────────────────────────────


def http_error(status_code: int) -> HTTPException:
    """HTTPException whose detail is the status line, e.g. '404 Not Found'."""
    return HTTPException(
        status_code=status_code,
        detail=f"{status_code} {HTTPStatus(status_code).phrase}",
    )


def _timestamp() -> str:
    """Current UTC time, ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _require_access_key(authorization: Optional[str]) -> str:
    if authorization is None:
        raise http_error(400)
    return authorization


def _enforce_flat_limit(limiter_name: str, limiters: LimiterSet, client_key: str) -> None:
    limiter = getattr(limiters, limiter_name)
    if not limiter.check(client_key):
        logger.warning("Rate limited", limiter=limiter_name, client_key=client_key)
        raise http_error(429)
    limiter.use(client_key)


def _authorize(
    limiters: LimiterSet,
    client_key: str,
    record_id: str,
    access_key: str,
    record: Record,
) -> None:
    """Failure-only limiting around the access key check.

    Raises:
        HTTPException(429): Either limiter is exhausted (nothing charged).
        HTTPException(401): Wrong access key (both limiters charged).
    """
    if not limiters.auth_ip.check(client_key) or not limiters.auth_user.check(record_id):
        logger.warning("Rate limited", limiter="auth", client_key=client_key, record_id=record_id)
        raise http_error(429)

    if not verify(access_key, record["accessKeyHash"]):
        limiters.auth_ip.use(client_key)
        limiters.auth_user.use(record_id)
        logger.warning("Access key rejected", client_key=client_key, record_id=record_id)
        raise http_error(401)


async def _read_or_404(store: RecordStore, record_id: str) -> Record:
    record = await store.read(record_id)
    if record is None:
        raise http_error(404)
    return record


# ─── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/get_version")
async def get_version() -> dict[str, str]:
    return {"version": API_VERSION}


@router.post("/create_user")
async def create_user(
    body: UserDataRequest,
    request: Request,
    store: RecordStore = Depends(get_store),
    limiters: LimiterSet = Depends(get_limiters),
) -> dict[str, Any]:
    """Register a new identity.

    Returns:
        JSON: {publicData, protectedData}

    Raises:
        HTTP 409: The id is taken (quota is still charged).
        HTTP 429: create_user quota exhausted for this client.
    """
    _enforce_flat_limit("create_user", limiters, get_client_key(request))

    now = _timestamp()
    record: Record = {
        "accessKeyHash": fingerprint(body.accessKey),
        "publicData": body.publicData,
        "protectedData": body.protectedData,
        "created": now,
        "modified": now,
    }
    try:
        await store.create(body.id, record)
    except RecordExistsError as exc:
        raise http_error(409) from exc

    return {
        "publicData": record["publicData"],
        "protectedData": record["protectedData"],
    }


@router.post("/get_public")
async def get_public(
    body: IdentityRequest,
    request: Request,
    store: RecordStore = Depends(get_store),
    limiters: LimiterSet = Depends(get_limiters),
) -> dict[str, Any]:
    """Return the publicData of an identity. No access key required."""
    _enforce_flat_limit("get_public", limiters, get_client_key(request))
    record = await _read_or_404(store, body.id)
    return {"publicData": record["publicData"]}


@router.post("/get_protected")
async def get_protected(
    body: IdentityRequest,
    request: Request,
    authorization: Optional[str] = Header(default=None),
    store: RecordStore = Depends(get_store),
    limiters: LimiterSet = Depends(get_limiters),
) -> dict[str, Any]:
    """Return the protectedData of an identity to a caller holding its access key."""
    access_key = _require_access_key(authorization)
    record = await _read_or_404(store, body.id)
    _authorize(limiters, get_client_key(request), body.id, access_key, record)
    return {"protectedData": record["protectedData"]}


@router.post("/update_user")
async def update_user(
    body: UserDataRequest,
    request: Request,
    authorization: Optional[str] = Header(default=None),
    store: RecordStore = Depends(get_store),
    limiters: LimiterSet = Depends(get_limiters),
) -> dict[str, Any]:
    """Replace the access key and both payloads of an identity.

    The Authorization header carries the current access key; body.accessKey
    becomes the new one. created is preserved, modified is bumped.
    """
    access_key = _require_access_key(authorization)
    record = await _read_or_404(store, body.id)
    _authorize(limiters, get_client_key(request), body.id, access_key, record)

    new_fingerprint = fingerprint(body.accessKey)

    def apply(current: Record) -> Record:
        current["accessKeyHash"] = new_fingerprint
        current["publicData"] = body.publicData
        current["protectedData"] = body.protectedData
        # Wall clock may step backwards; modified never precedes created
        current["modified"] = max(_timestamp(), current.get("created", ""))
        return current

    try:
        await store.update(body.id, apply)
    except RecordNotFoundError as exc:
        # Deleted between the lookup and the update
        raise http_error(404) from exc

    return {
        "publicData": body.publicData,
        "protectedData": body.protectedData,
    }


@router.post("/delete_user")
async def delete_user(
    body: IdentityRequest,
    request: Request,
    authorization: Optional[str] = Header(default=None),
    store: RecordStore = Depends(get_store),
    limiters: LimiterSet = Depends(get_limiters),
) -> dict[str, Any]:
    """Remove an identity. Returns an empty object."""
    access_key = _require_access_key(authorization)
    record = await _read_or_404(store, body.id)
    _authorize(limiters, get_client_key(request), body.id, access_key, record)

    try:
        await store.delete(body.id)
    except RecordNotFoundError as exc:
        raise http_error(404) from exc
    return {}


@router.api_route("/get_users", methods=["GET", "POST"])
async def get_users(store: RecordStore = Depends(get_store)) -> list[str]:
    """All registered ids. Unauthenticated and not rate limited."""
    return await store.list()
