"""Health endpoint for cryptouser.

GET /health: 503 before the lifespan marks the app ready, 200 afterwards.

The 200 body reports the record directory and how many keys each rate
limiter is currently tracking (keys below full quota), which is the quickest
way to see an ongoing guessing attempt from the outside.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from cryptouser.auth.limiter import LimiterSet
from cryptouser.store import RecordStore

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok",
          "records_path": "/srv/cryptouser/data",
          "tracked_keys": {"create_user": 0, "get_public": 3, "auth_ip": 1, "auth_user": 1},
          "replenisher": "running" | "stopped"
        }

    Response body (503):
        {"error": "503 Service Unavailable"}
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="starting")

    store: RecordStore = request.app.state.store
    limiters: LimiterSet = request.app.state.limiters
    replenisher = getattr(request.app.state, "replenisher", None)

    return {
        "status": "ok",
        "records_path": str(store.path),
        "tracked_keys": {name: limiter.tracked() for name, limiter in limiters.items()},
        "replenisher": "running" if replenisher is not None and replenisher.running else "stopped",
    }
