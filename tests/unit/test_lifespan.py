"""Unit tests for cryptouser/main.py: application factory + lifespan lifecycle.

Covers:
  - create_app() importable, independent instances, ready=False before startup
  - lifespan startup wires config, store, limiters and replenisher, then ready
  - lifespan shutdown clears ready and stops the replenisher
  - an invalid config file aborts startup with SystemExit(1)
  - service discovery at GET /
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from cryptouser.auth.limiter import LimiterSet, Replenisher
from cryptouser.config import Config, LimitsConfig, StoreConfig
from cryptouser.constants import API_PREFIX
from cryptouser.main import create_app, lifespan
from cryptouser.store import RecordStore


def _stub_config(tmp_path: Path) -> Config:
    config = Config.defaults()
    config.store = StoreConfig(path=str(tmp_path / "records"))
    config.limits = LimitsConfig(tick_seconds=0.01)
    return config


def _patch_load_config(monkeypatch: pytest.MonkeyPatch, config: Config) -> None:
    monkeypatch.setattr("cryptouser.main.load_config", lambda: config)


class TestCreateAppFactory:
    def test_returns_fastapi_instance(self) -> None:
        assert isinstance(create_app(), FastAPI)

    def test_independent_instances(self) -> None:
        assert create_app() is not create_app()

    def test_ready_false_before_lifespan(self) -> None:
        assert create_app().state.ready is False

    def test_docs_disabled_by_default(self) -> None:
        application = create_app()
        assert application.docs_url is None
        assert application.openapi_url is None


class TestLifespan:
    async def test_startup_wires_state(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config = _stub_config(tmp_path)
        _patch_load_config(monkeypatch, config)
        application = create_app()

        async with lifespan(application):
            assert application.state.ready is True
            assert application.state.config is config
            assert isinstance(application.state.store, RecordStore)
            assert isinstance(application.state.limiters, LimiterSet)
            assert isinstance(application.state.replenisher, Replenisher)
            assert application.state.replenisher.running is True
            assert (tmp_path / "records").is_dir()

            transport = ASGITransport(app=application)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/health")
            assert response.status_code == 200
            assert response.json()["replenisher"] == "running"

        assert application.state.ready is False
        assert application.state.replenisher.running is False

    async def test_existing_records_survive_restart(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        config = _stub_config(tmp_path)
        _patch_load_config(monkeypatch, config)
        body = {"id": "alice1", "accessKey": "k", "publicData": "p", "protectedData": "s"}

        first = create_app()
        async with lifespan(first):
            transport = ASGITransport(app=first)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                assert (await client.post(f"{API_PREFIX}/create_user", json=body)).status_code == 200

        second = create_app()
        async with lifespan(second):
            transport = ASGITransport(app=second)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post(f"{API_PREFIX}/get_public", json={"id": "alice1"})
        assert response.json() == {"publicData": "p"}

    async def test_invalid_config_aborts_startup(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("version: 99\n")
        monkeypatch.setenv("CRYPTOUSER_CONFIG", str(config_file))
        application = create_app()

        with pytest.raises(SystemExit) as exc_info:
            async with lifespan(application):
                pass
        assert exc_info.value.code == 1
        assert application.state.ready is False

    def test_lifespan_runs_under_test_client(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_load_config(monkeypatch, _stub_config(tmp_path))
        with TestClient(create_app()) as client:
            response = client.get("/health")
        assert response.status_code == 200


class TestRoot:
    async def test_service_discovery(self, client: AsyncClient) -> None:
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json() == {
            "service": "cryptouser",
            "version": "0.1",
            "api": API_PREFIX,
            "health": "/health",
        }
