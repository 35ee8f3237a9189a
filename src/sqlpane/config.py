from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError

DEFAULT_LIMIT_SIZE = 200
DEFAULT_TIMEOUT_SECOND = 5
DEFAULT_MAX_RETAINED_ROWS = 2000


class Engine(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"
    SQLITE = "sqlite"


_DEFAULT_PORTS = {Engine.MYSQL: 3306, Engine.POSTGRES: 5432}


@dataclass(frozen=True)
class ConnectionDescriptor:
    engine: Engine
    name: str | None = None
    user: str | None = None
    host: str | None = None
    port: int | None = None
    path: Path | None = None
    password: str | None = None
    database: str | None = None
    unix_domain_socket: Path | None = None
    limit_size: int = DEFAULT_LIMIT_SIZE
    timeout_second: int = DEFAULT_TIMEOUT_SECOND

    @property
    def id(self) -> str:
        return self.name or self.masked_database_url()

    @property
    def display_name(self) -> str:
        url = self.masked_database_url()
        return f"[{self.name}] {url}" if self.name else url

    def database_url(self) -> str:
        return self._build_database_url(self.password or "")

    def masked_database_url(self) -> str:
        return self._build_database_url("*" * len(self.password or ""))

    def socket_path(self) -> str | None:
        if os.name == "nt" or self.unix_domain_socket is None:
            return None
        path = str(expand_path(self.unix_domain_socket))
        return path or None

    def _build_database_url(self, password: str) -> str:
        if self.engine is Engine.SQLITE:
            if self.path is None:
                raise ConfigError("type sqlite needs the path field")
            return f"sqlite://{expand_path(self.path)}"

        engine = self.engine.value
        for attr in ("user", "host", "port"):
            if getattr(self, attr) in (None, ""):
                raise ConfigError(f"type {engine} needs the {attr} field")

        socket = self.socket_path()
        if self.engine is Engine.MYSQL:
            suffix = f"?socket={socket}" if socket else ""
            database = f"/{self.database}" if self.database else ""
            return f"mysql://{self.user}:{password}@{self.host}:{self.port}{database}{suffix}"

        if socket:
            database = f"dbname={self.database}&" if self.database else ""
            return f"postgres://?{database}host={socket}&user={self.user}&password={password}"
        database = f"/{self.database}" if self.database else ""
        return f"postgres://{self.user}:{password}@{self.host}:{self.port}{database}"


@dataclass
class AppConfig:
    connections: list[ConnectionDescriptor]
    log_level: str = "info"
    log_file: str | None = None
    max_retained_rows: int = DEFAULT_MAX_RETAINED_ROWS
    key_bind_path: Path | None = None


def default_config() -> AppConfig:
    return AppConfig(
        connections=[
            ConnectionDescriptor(
                engine=Engine.MYSQL, user="root", host="localhost", port=3306
            )
        ]
    )


def expand_path(path: str | Path) -> Path:
    """Expand a leading ``~`` and ``$VAR`` path segments."""
    parts = Path(path).parts
    expanded = Path()
    if parts and parts[0] == "~":
        expanded = Path.home()
        parts = parts[1:]
    for part in parts:
        if os.name != "nt" and part.startswith("$"):
            expanded = expanded / os.environ.get(part[1:], "")
        elif os.name == "nt" and len(part) > 1 and part.startswith("%") and part.endswith("%"):
            expanded = expanded / os.environ.get(part[1:-1], "")
        else:
            expanded = expanded / part
    return expanded


def _resolve_env(value: Any, env: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        expanded = os.path.expandvars(value)
        if expanded.startswith("${") and expanded.endswith("}"):
            key = expanded[2:-1]
            if key not in env:
                raise ConfigError(f"Environment variable {key} is required but not set")
            return env[key]
        return expanded
    if isinstance(value, list):
        return [_resolve_env(v, env) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_env(v, env) for k, v in value.items()}
    return value


def _positive_int(value: Any, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc
    if number <= 0:
        raise ConfigError(f"{field_name} must be greater than 0")
    return number


def _parse_connection(raw: Any, index: int) -> ConnectionDescriptor:
    if not isinstance(raw, dict):
        raise ConfigError(f"connections[{index}] must be a mapping")
    try:
        engine = Engine(str(raw.get("type", "")).lower())
    except ValueError as exc:
        raise ConfigError(
            f"connections[{index}].type must be one of mysql, postgres, sqlite"
        ) from exc

    port = raw.get("port")
    descriptor = ConnectionDescriptor(
        engine=engine,
        name=raw.get("name"),
        user=raw.get("user"),
        host=raw.get("host"),
        port=_positive_int(port, f"connections[{index}].port")
        if port is not None
        else _DEFAULT_PORTS.get(engine),
        path=Path(raw["path"]) if raw.get("path") else None,
        password=str(raw["password"]) if raw.get("password") is not None else None,
        database=raw.get("database"),
        unix_domain_socket=Path(raw["unix_domain_socket"])
        if raw.get("unix_domain_socket")
        else None,
        limit_size=_positive_int(
            raw.get("limit_size", DEFAULT_LIMIT_SIZE), f"connections[{index}].limit_size"
        ),
        timeout_second=_positive_int(
            raw.get("timeout_second", DEFAULT_TIMEOUT_SECOND),
            f"connections[{index}].timeout_second",
        ),
    )

    if engine is Engine.SQLITE:
        if descriptor.path is None:
            raise ConfigError(f"connections[{index}]: sqlite needs a path")
    elif not descriptor.host:
        raise ConfigError(f"connections[{index}]: {engine.value} needs a host")
    # Renders the URL once so missing user/port fail at load time.
    descriptor.database_url()
    return descriptor


def load_config(path: str | Path, env: Mapping[str, str] | None = None) -> AppConfig:
    env = env or os.environ
    config_path = Path(path)
    if not config_path.exists():
        return default_config()

    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read {config_path}: {exc.strerror or exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    resolved = _resolve_env(raw, env)

    connections_raw = resolved.get("connections", resolved.get("conn"))
    if not connections_raw:
        raise ConfigError("At least one connection must be configured")
    if not isinstance(connections_raw, list):
        raise ConfigError("connections must be a list")

    connections = [_parse_connection(c, i) for i, c in enumerate(connections_raw)]
    seen: set[str] = set()
    for descriptor in connections:
        if descriptor.id in seen:
            raise ConfigError(f"Duplicate connection: {descriptor.id}")
        seen.add(descriptor.id)

    key_bind_path = resolved.get("key_bind_path")
    return AppConfig(
        connections=connections,
        log_level=str(resolved.get("log_level", "info")),
        log_file=resolved.get("log_file"),
        max_retained_rows=_positive_int(
            resolved.get("max_retained_rows", DEFAULT_MAX_RETAINED_ROWS),
            "max_retained_rows",
        ),
        key_bind_path=Path(key_bind_path) if key_bind_path else None,
    )
