"""
Error taxonomy for the Shelly BLE RPC client.

Every failure a call can end in maps to exactly one of these classes, so
callers can tell a radio problem from a malformed frame, a stale response
or a device-side RPC error without parsing messages.
"""

from typing import Any


class ShellyRPCError(Exception):
    """Base class for all client errors.

    `phase` names the roundtrip step that failed (e.g. "write request to
    data characteristic") and is set by the roundtrip engine.
    """

    def __init__(self, message: str, phase: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"{self.phase}: {self.message}"
        return self.message


class DeviceConnectionError(ShellyRPCError):
    """Base for failures acquiring or releasing the device connection."""


class ConnectionSetupError(DeviceConnectionError):
    """Adapter, address, discovery or connect failure."""


class ConnectionTeardownError(DeviceConnectionError):
    """Disconnecting from the device failed."""


class TransportError(ShellyRPCError):
    """A read or write against a GATT characteristic failed."""


class ShortWriteError(TransportError):
    """A chunk write reported fewer bytes than the chunk holds."""

    def __init__(self, written: int, expected: int, phase: str | None = None) -> None:
        super().__init__(
            f"wrote {written} bytes, expected to write {expected} bytes", phase
        )
        self.written = written
        self.expected = expected


class TransportReadError(TransportError):
    """Reading from a characteristic failed."""


class EncodingError(ShellyRPCError):
    """A frame could not be serialised or parsed."""


class CorrelationError(ShellyRPCError):
    """The response does not belong to the outstanding request."""

    def __init__(self, field: str, expected: Any, actual: Any) -> None:
        super().__init__(
            f"wrong response {field}, expected: {expected}, got: {actual}"
        )
        self.field = field
        self.expected = expected
        self.actual = actual


class ApplicationError(ShellyRPCError):
    """The device answered the call with an RPC error envelope.

    The roundtrip itself succeeded and the response is correlated; the
    full response frame is kept on `response`.
    """

    def __init__(self, code: int, message: str, response: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.response = response

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.rpc_message}


class ClientStateError(RuntimeError):
    """An operation was used in the wrong client state (programming error)."""
