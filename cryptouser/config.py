"""Config loading for cryptouser.

Reads `.cryptouser/config.yaml` (or `~/.cryptouser/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid
limiter values. If no config file is found, returns default values (safe to
run without config).

Config search order:
  1. `config_path` argument (if provided: for testing or explicit override)
  2. CRYPTOUSER_CONFIG environment variable (if set)
  3. `.cryptouser/config.yaml` (working directory: for development)
  4. `~/.cryptouser/config.yaml` (home directory: for production deployments)

Environment variable overrides:
  CRYPTOUSER_PORT    : overrides server.port
  CRYPTOUSER_DATA_DIR: overrides store.path
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from cryptouser.constants import (
    AUTH_IP_LIMIT,
    AUTH_USER_LIMIT,
    CREATE_USER_LIMIT,
    GET_PUBLIC_LIMIT,
    LIMITER_TICK_SECONDS,
)
from cryptouser.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# Default config search paths (CRYPTOUSER_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".cryptouser/config.yaml",
    os.path.expanduser("~/.cryptouser/config.yaml"),
]

# Limiter sections recognised under `limits:`
LIMITER_NAMES: tuple[str, ...] = ("create_user", "get_public", "auth_ip", "auth_user")


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class QuotaConfig:
    """Capacity and window length for one rate limiter.

    capacity:       charges allowed per window
    window_minutes: window length; also the size of one charge in quota units
    """

    capacity: int
    window_minutes: int


@dataclass
class LimitsConfig:
    """Rate limiter configuration."""

    tick_seconds: float = LIMITER_TICK_SECONDS
    create_user: QuotaConfig = field(default_factory=lambda: QuotaConfig(*CREATE_USER_LIMIT))
    get_public: QuotaConfig = field(default_factory=lambda: QuotaConfig(*GET_PUBLIC_LIMIT))
    auth_ip: QuotaConfig = field(default_factory=lambda: QuotaConfig(*AUTH_IP_LIMIT))
    auth_user: QuotaConfig = field(default_factory=lambda: QuotaConfig(*AUTH_USER_LIMIT))


@dataclass
class StoreConfig:
    """Record store location."""

    path: str = "./data"


@dataclass
class ServerConfig:
    """uvicorn binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class Config:
    """Root configuration object populated from .cryptouser/config.yaml.

    All fields have safe defaults: cryptouser can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On a non-positive or non-integer limiter value.
        """
        # ── Limits ────────────────────────────────────────────────────────────
        limits_raw = raw.get("limits") or {}
        limits = LimitsConfig()
        tick_seconds = limits_raw.get("tick_seconds", LIMITER_TICK_SECONDS)
        if not isinstance(tick_seconds, (int, float)) or tick_seconds <= 0:
            _config_error(f"Invalid limits.tick_seconds: {tick_seconds!r}. Must be a positive number.")
        limits.tick_seconds = float(tick_seconds)
        for name in LIMITER_NAMES:
            default: QuotaConfig = getattr(limits, name)
            setattr(limits, name, _parse_quota(name, limits_raw.get(name) or {}, default))

        # ── Store ─────────────────────────────────────────────────────────────
        store_raw = raw.get("store") or {}
        store = StoreConfig(path=str(store_raw.get("path", "./data")))

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 8000),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            store=store,
            limits=limits,
            path=path,
        )


def _config_error(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)


def _parse_quota(name: str, raw: dict[str, Any], default: QuotaConfig) -> QuotaConfig:
    """Merge one `limits.<name>` section onto its default quota."""
    values = {
        "capacity": raw.get("capacity", default.capacity),
        "window_minutes": raw.get("window_minutes", default.window_minutes),
    }
    for key, value in values.items():
        # bool is an int subclass; `capacity: yes` is a typo, not a quota
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            _config_error(
                f"Invalid limits.{name}.{key}: {value!r}. Must be a positive integer."
            )
    return QuotaConfig(**values)


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate cryptouser configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes an error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid limiter values, or invalid ``CRYPTOUSER_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("CRYPTOUSER_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found: using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "cryptouser refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "cryptouser is configured to bind on 0.0.0.0 (all interfaces). "
            "Put it behind a reverse proxy that terminates TLS."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        store_path=config.store.path,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles:
      CRYPTOUSER_PORT    : overrides config.server.port (SystemExit(1) if not an integer)
      CRYPTOUSER_DATA_DIR: overrides config.store.path
    """
    env_port = os.environ.get("CRYPTOUSER_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _config_error(
                f"CRYPTOUSER_PORT environment variable is not a valid integer: '{env_port}'"
            )

    env_data_dir = os.environ.get("CRYPTOUSER_DATA_DIR")
    if env_data_dir:
        config.store.path = env_data_dir
