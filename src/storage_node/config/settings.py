"""Typed settings for the storage node supervisor and reconciliation loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Optional
from urllib.parse import urlsplit

from .errors import ConfigurationError
from .runtime import env_bool, env_int, env_list, env_seconds, env_str

DEFAULT_DIRECTORY_URL = "https://spktest.dlux.io"
DEFAULT_STORAGE_LIMIT_BYTES = 100 * 1024 * 1024 * 1024
_DEFAULT_HOME = Path.home() / ".oratr"


class NodeType(Enum):
    """Role the validation binary runs as."""

    VALIDATOR = 1
    STORAGE = 2

    @classmethod
    def parse(cls, raw: str) -> "NodeType":
        lowered = raw.strip().lower()
        for member in cls:
            if lowered in (member.name.lower(), str(member.value)):
                return member
        raise ConfigurationError.invalid_value("node_type", raw, "Expected 'validator', 'storage', 1 or 2")


@dataclass(frozen=True)
class SupervisorSettings:
    """Everything the process supervisor needs to launch and babysit the binary."""

    binary_path: Path
    account: str
    content_store_port: int
    directory_url: str
    node_type: NodeType
    storage_limit_bytes: int
    data_dir: Path
    working_dir: Path
    auto_restart: bool = True
    max_restarts: int = 5
    restart_delay_seconds: float = 5.0
    startup_timeout_seconds: float = 30.0
    stop_grace_seconds: float = 10.0
    debug: bool = False


@dataclass(frozen=True)
class ReconciliationSettings:
    """Knobs for the pin reconciliation engine and its scheduler."""

    account: str
    interval_seconds: float = 60.0
    debounce_seconds: float = 2.0
    pin_timeout_seconds: float = 30.0
    pin_attempts: int = 3
    pin_retry_delay_seconds: float = 1.0
    max_concurrent_pins: int = 50
    static_pins: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class NodeSettings:
    """Full configuration surface of a storage node."""

    account: str
    binary_path: Path = _DEFAULT_HOME / "poa" / "proofofaccess"
    data_dir: Path = _DEFAULT_HOME / "poa-data"
    working_dir: Optional[Path] = None
    content_store_host: str = "127.0.0.1"
    content_store_port: int = 5001
    directory_url: str = DEFAULT_DIRECTORY_URL
    node_type: NodeType = NodeType.STORAGE
    storage_limit_bytes: int = DEFAULT_STORAGE_LIMIT_BYTES
    reconciliation_interval_seconds: float = 60.0
    trigger_debounce_seconds: float = 2.0
    auto_restart: bool = True
    max_restarts: int = 5
    restart_delay_seconds: float = 5.0
    startup_timeout_seconds: float = 30.0
    stop_grace_seconds: float = 10.0
    pin_timeout_seconds: float = 30.0
    pin_attempts: int = 3
    pin_retry_delay_seconds: float = 1.0
    max_concurrent_pins: int = 50
    directory_retries: int = 3
    directory_retry_delay_seconds: float = 1.0
    static_pins: FrozenSet[str] = field(default_factory=frozenset)
    status_freshness_seconds: float = 3600.0
    debug: bool = False

    @property
    def content_store_url(self) -> str:
        return f"http://{self.content_store_host}:{self.content_store_port}"

    @property
    def status_snapshot_path(self) -> Path:
        return self.data_dir / "node-status.json"

    @property
    def managed_pins_path(self) -> Path:
        return self.data_dir / "managed-pins.json"

    def validate(self) -> "NodeSettings":
        """Raise ``ConfigurationError`` on the first invalid field; return self otherwise."""
        if not self.account or not self.account.strip():
            raise ConfigurationError.missing_value("account", "a storage node needs an account identity")
        _require_http_url("directory_url", self.directory_url)
        if not 0 < self.content_store_port < 65536:
            raise ConfigurationError.invalid_value("content_store_port", self.content_store_port, "Expected 1-65535")
        for name in (
            "reconciliation_interval_seconds",
            "startup_timeout_seconds",
            "stop_grace_seconds",
            "pin_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError.invalid_value(name, getattr(self, name), "Must be positive")
        for name in (
            "max_restarts",
            "restart_delay_seconds",
            "trigger_debounce_seconds",
            "pin_retry_delay_seconds",
            "directory_retry_delay_seconds",
            "storage_limit_bytes",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError.invalid_value(name, getattr(self, name), "Must be non-negative")
        for name in ("pin_attempts", "directory_retries", "max_concurrent_pins"):
            if getattr(self, name) < 1:
                raise ConfigurationError.invalid_value(name, getattr(self, name), "Must be at least 1")
        return self

    def supervisor_settings(self) -> SupervisorSettings:
        return SupervisorSettings(
            binary_path=self.binary_path,
            account=self.account,
            content_store_port=self.content_store_port,
            directory_url=self.directory_url,
            node_type=self.node_type,
            storage_limit_bytes=self.storage_limit_bytes,
            data_dir=self.data_dir,
            working_dir=self.working_dir or self.data_dir,
            auto_restart=self.auto_restart,
            max_restarts=self.max_restarts,
            restart_delay_seconds=self.restart_delay_seconds,
            startup_timeout_seconds=self.startup_timeout_seconds,
            stop_grace_seconds=self.stop_grace_seconds,
            debug=self.debug,
        )

    def reconciliation_settings(self) -> ReconciliationSettings:
        return ReconciliationSettings(
            account=self.account,
            interval_seconds=self.reconciliation_interval_seconds,
            debounce_seconds=self.trigger_debounce_seconds,
            pin_timeout_seconds=self.pin_timeout_seconds,
            pin_attempts=self.pin_attempts,
            pin_retry_delay_seconds=self.pin_retry_delay_seconds,
            max_concurrent_pins=self.max_concurrent_pins,
            static_pins=self.static_pins,
        )

    @classmethod
    def from_env(cls, prefix: str = "STORAGE_NODE_") -> "NodeSettings":
        """Build settings from ``<prefix>*`` environment variables, falling back to defaults."""

        def key(name: str) -> str:
            return f"{prefix}{name}"

        defaults = cls(account="")
        raw_node_type = env_str(key("NODE_TYPE"))
        raw_working_dir = env_str(key("WORKING_DIR"))
        settings = cls(
            account=env_str(key("ACCOUNT"), required=True) or "",
            binary_path=Path(env_str(key("BINARY_PATH"), str(defaults.binary_path)) or "").expanduser(),
            data_dir=Path(env_str(key("DATA_DIR"), str(defaults.data_dir)) or "").expanduser(),
            working_dir=Path(raw_working_dir).expanduser() if raw_working_dir else None,
            content_store_host=env_str(key("IPFS_HOST"), defaults.content_store_host) or defaults.content_store_host,
            content_store_port=_int(key("IPFS_PORT"), defaults.content_store_port),
            directory_url=(env_str(key("DIRECTORY_URL"), defaults.directory_url) or defaults.directory_url).rstrip("/"),
            node_type=NodeType.parse(raw_node_type) if raw_node_type else defaults.node_type,
            storage_limit_bytes=_int(key("STORAGE_LIMIT_BYTES"), defaults.storage_limit_bytes),
            reconciliation_interval_seconds=_seconds(key("SYNC_INTERVAL_SECONDS"), defaults.reconciliation_interval_seconds),
            trigger_debounce_seconds=_seconds(key("TRIGGER_DEBOUNCE_SECONDS"), defaults.trigger_debounce_seconds),
            auto_restart=bool(env_bool(key("AUTO_RESTART"), or_value=defaults.auto_restart)),
            max_restarts=_int(key("MAX_RESTARTS"), defaults.max_restarts),
            restart_delay_seconds=_seconds(key("RESTART_DELAY_SECONDS"), defaults.restart_delay_seconds),
            startup_timeout_seconds=_seconds(key("STARTUP_TIMEOUT_SECONDS"), defaults.startup_timeout_seconds),
            stop_grace_seconds=_seconds(key("STOP_GRACE_SECONDS"), defaults.stop_grace_seconds),
            pin_timeout_seconds=_seconds(key("PIN_TIMEOUT_SECONDS"), defaults.pin_timeout_seconds),
            pin_attempts=_int(key("PIN_ATTEMPTS"), defaults.pin_attempts),
            pin_retry_delay_seconds=_seconds(key("PIN_RETRY_DELAY_SECONDS"), defaults.pin_retry_delay_seconds),
            max_concurrent_pins=_int(key("MAX_CONCURRENT_PINS"), defaults.max_concurrent_pins),
            directory_retries=_int(key("DIRECTORY_RETRIES"), defaults.directory_retries),
            directory_retry_delay_seconds=_seconds(key("DIRECTORY_RETRY_DELAY_SECONDS"), defaults.directory_retry_delay_seconds),
            static_pins=frozenset(env_list(key("STATIC_PINS"), or_value=()) or ()),
            status_freshness_seconds=_seconds(key("STATUS_FRESHNESS_SECONDS"), defaults.status_freshness_seconds),
            debug=bool(env_bool(key("DEBUG"), or_value=False)),
        )
        return settings.validate()


def _int(name: str, default: int) -> int:
    value = env_int(name, or_value=default)
    return default if value is None else value


def _seconds(name: str, default: float) -> float:
    value = env_seconds(name, or_value=default)
    return default if value is None else float(value)


def _require_http_url(name: str, value: str) -> None:
    parsed = urlsplit(value)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise ConfigurationError.invalid_format(name, value, "an http(s) URL")


__all__ = [
    "DEFAULT_DIRECTORY_URL",
    "NodeSettings",
    "NodeType",
    "ReconciliationSettings",
    "SupervisorSettings",
]
