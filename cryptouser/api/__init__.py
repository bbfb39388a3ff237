"""cryptouser HTTP API package (router, request models, middleware)."""

from __future__ import annotations

from cryptouser.api.router import router

__all__ = ["router"]
