import subprocess
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from .client import ClientState, ConnectionManagerBase, RPCClient, call, make_id_generator
from .config_loader import Config, GattConfig, resolve
from .errors import (
    ApplicationError,
    ClientStateError,
    ConnectionSetupError,
    ConnectionTeardownError,
    CorrelationError,
    DeviceConnectionError,
    EncodingError,
    ShellyRPCError,
    ShortWriteError,
    TransportError,
    TransportReadError,
)
from .frames import ErrorEnvelope, JSONValue, RequestFrame, ResponseFrame
from .gatt_io import Characteristic
from .transport import Connection, roundtrip


def _get_version() -> str:
    """Get version from package metadata, falling back to git describe of a source checkout."""
    try:
        return version("shellyrpc")
    except PackageNotFoundError:
        pass
    try:
        result = subprocess.run(
            ["git", "describe", "--tags"],
            capture_output=True,
            text=True,
            timeout=2,
            cwd=Path(__file__).parent,
        )
        if result.returncode == 0:
            tag = result.stdout.strip()
            if tag.startswith("v"):
                return tag[1:]
            return tag
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        pass
    return "0.0.0"


__version__ = _get_version()

__all__ = [
    "ApplicationError",
    "Characteristic",
    "ClientState",
    "ClientStateError",
    "Config",
    "Connection",
    "ConnectionManagerBase",
    "ConnectionSetupError",
    "ConnectionTeardownError",
    "CorrelationError",
    "DeviceConnectionError",
    "EncodingError",
    "ErrorEnvelope",
    "GattConfig",
    "JSONValue",
    "RPCClient",
    "RequestFrame",
    "ResponseFrame",
    "ShellyRPCError",
    "ShortWriteError",
    "TransportError",
    "TransportReadError",
    "call",
    "make_id_generator",
    "resolve",
    "roundtrip",
]
