"""
Centralized configuration for shellyrpc.

Provides dataclass-based configuration with defaults and validation.
Supports a JSON config file and environment variable overrides.
"""
import json
import os
import re
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, TypeVar

from .logging_setup import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# ── Protocol constants (fixed by device firmware) ─────────────────────

# https://kb.shelly.cloud/knowledge-base/communicating-with-shelly-devices-via-bluetooth-lo
DEFAULT_SERVICE_UUID = "5f6d4f53-5f52-5043-5f53-56435f49445f"
DEFAULT_DATA_UUID = "5f6d4f53-5f52-5043-5f64-6174615f5f5f"     # request/response payload
DEFAULT_TX_CTRL_UUID = "5f6d4f53-5f52-5043-5f74-785f63746c5f"  # request length, write
DEFAULT_RX_CTRL_UUID = "5f6d4f53-5f52-5043-5f72-785f63746c5f"  # response length, read

SOURCE_NAME = "shellyrpc"
DEFAULT_ADAPTER = "hci0"
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds, discovery + connect
DEFAULT_TIMEOUT = 10.0          # seconds, every other operation

ENV_PREFIX = "SHELLYRPC_"

# BlueZ adapter object names, /org/bluez/hciN
_ADAPTER_RE = re.compile(r"hci[0-9]+")


def resolve(override: T | None, default: T) -> T:
    """Return `override` unless it is unset (None or empty), else `default`."""
    if override is None or override == "":
        return default
    return override


def normalize_uuid(value: str) -> str:
    """Validate a 128-bit UUID string and return it lower-cased."""
    try:
        return str(uuid.UUID(value))
    except (ValueError, AttributeError, TypeError) as e:
        raise ValueError(f"invalid UUID {value!r}") from e


@dataclass
class GattConfig:
    """GATT service and characteristic UUIDs."""

    service_uuid: str = DEFAULT_SERVICE_UUID
    data_uuid: str = DEFAULT_DATA_UUID
    tx_ctrl_uuid: str = DEFAULT_TX_CTRL_UUID
    rx_ctrl_uuid: str = DEFAULT_RX_CTRL_UUID

    def __post_init__(self) -> None:
        self.service_uuid = normalize_uuid(self.service_uuid)
        self.data_uuid = normalize_uuid(self.data_uuid)
        self.tx_ctrl_uuid = normalize_uuid(self.tx_ctrl_uuid)
        self.rx_ctrl_uuid = normalize_uuid(self.rx_ctrl_uuid)


@dataclass
class Config:
    """Main shellyrpc configuration."""

    adapter: str = DEFAULT_ADAPTER
    gatt: GattConfig = field(default_factory=GattConfig)
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    timeout: float = DEFAULT_TIMEOUT
    source: str = SOURCE_NAME

    def __post_init__(self) -> None:
        if not isinstance(self.adapter, str) or not _ADAPTER_RE.fullmatch(self.adapter):
            raise ValueError(f"invalid adapter name {self.adapter!r}, expected hciN")
        if self.connect_timeout <= 0 or self.timeout <= 0:
            raise ValueError("timeouts must be positive")
        if not self.source:
            raise ValueError("source name must not be empty")

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        """
        Load configuration from file.

        Args:
            path: Path to config file. If None, uses environment-based default.

        Returns:
            Config instance with loaded values and environment overrides.
        """
        if path is None:
            path = cls._get_default_path()

        path = Path(path)

        if not path.exists():
            logger.debug("Config file not found: %s, using defaults", path)
            return cls._from_dict({})

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"config file {path} must contain a JSON object")

        logger.debug("Loaded config from %s", path)
        return cls._from_dict(data)

    @staticmethod
    def _get_default_path() -> Path:
        """Get default config path, $SHELLYRPC_CONFIG or the user config dir."""
        env_path = os.getenv(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path)
        return Path.home() / ".config" / "shellyrpc" / "config.json"

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary (JSON data); env vars win over file values."""

        def get(key: str, default: Any) -> Any:
            return resolve(os.getenv(f"{ENV_PREFIX}{key}"), data.get(key, default))

        gatt = GattConfig(
            service_uuid=get("SERVICE_UUID", DEFAULT_SERVICE_UUID),
            data_uuid=get("DATA_UUID", DEFAULT_DATA_UUID),
            tx_ctrl_uuid=get("TX_CTRL_UUID", DEFAULT_TX_CTRL_UUID),
            rx_ctrl_uuid=get("RX_CTRL_UUID", DEFAULT_RX_CTRL_UUID),
        )

        return cls(
            adapter=get("ADAPTER", DEFAULT_ADAPTER),
            gatt=gatt,
            connect_timeout=float(get("CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT)),
            timeout=float(get("TIMEOUT", DEFAULT_TIMEOUT)),
            source=get("SOURCE", SOURCE_NAME),
        )

    def with_overrides(
        self,
        adapter: str | None = None,
        service_uuid: str | None = None,
        data_uuid: str | None = None,
        tx_ctrl_uuid: str | None = None,
        rx_ctrl_uuid: str | None = None,
        connect_timeout: float | None = None,
        timeout: float | None = None,
        source: str | None = None,
    ) -> "Config":
        """Return a copy with every given (non-empty) value applied."""
        gatt = GattConfig(
            service_uuid=resolve(service_uuid, self.gatt.service_uuid),
            data_uuid=resolve(data_uuid, self.gatt.data_uuid),
            tx_ctrl_uuid=resolve(tx_ctrl_uuid, self.gatt.tx_ctrl_uuid),
            rx_ctrl_uuid=resolve(rx_ctrl_uuid, self.gatt.rx_ctrl_uuid),
        )
        return replace(
            self,
            adapter=resolve(adapter, self.adapter),
            gatt=gatt,
            connect_timeout=resolve(connect_timeout, self.connect_timeout),
            timeout=resolve(timeout, self.timeout),
            source=resolve(source, self.source),
        )

    def to_dict(self) -> dict[str, Any]:
        """Export config to dictionary for saving."""
        return {
            "ADAPTER": self.adapter,
            "SERVICE_UUID": self.gatt.service_uuid,
            "DATA_UUID": self.gatt.data_uuid,
            "TX_CTRL_UUID": self.gatt.tx_ctrl_uuid,
            "RX_CTRL_UUID": self.gatt.rx_ctrl_uuid,
            "CONNECT_TIMEOUT": self.connect_timeout,
            "TIMEOUT": self.timeout,
            "SOURCE": self.source,
        }

    def save(self, path: str | Path) -> None:
        """Save config to file."""
        path = Path(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info("Saved config to %s", path)
