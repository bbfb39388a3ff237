"""Root test configuration for cryptouser.

Keeps every test hermetic:
  - CRYPTOUSER_* environment overrides are cleared.
  - Config search paths are emptied so a developer's ~/.cryptouser/config.yaml
    never leaks into a test run.

Shared fixtures build an application instance wired to a tmp_path record
store and a fresh LimiterSet. The lifespan is NOT run (ASGITransport does not
send lifespan events), so there is no background replenisher unless a test
starts one explicitly.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from cryptouser.auth.limiter import LimiterSet
from cryptouser.config import LimitsConfig
from cryptouser.constants import API_PREFIX
from cryptouser.main import create_app
from cryptouser.store import RecordStore


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear env overrides and default config search paths for all tests."""
    for name in ("CRYPTOUSER_CONFIG", "CRYPTOUSER_PORT", "CRYPTOUSER_DATA_DIR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("cryptouser.config.DEFAULT_CONFIG_PATHS", [])


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def store(data_dir: Path) -> RecordStore:
    return RecordStore(data_dir)


@pytest.fixture
def limiters() -> LimiterSet:
    return LimiterSet.from_config(LimitsConfig())


@pytest.fixture
def app(store: RecordStore, limiters: LimiterSet) -> FastAPI:
    """create_app() with state populated the way the lifespan would."""
    application = create_app()
    application.state.store = store
    application.state.limiters = limiters
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Client calling from 127.0.0.1 (ASGITransport's default peer address)."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def api() -> str:
    return API_PREFIX
