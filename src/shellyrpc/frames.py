"""
RPC frames and their JSON wire encoding.

Request frame:   {"id": <uint64>, "src": <str>, "method": <str>, "params": <json>}
Response frame:  {"id": <uint64>, "dst": <str>, "result": <json>}

Devices report RPC failures with a frame level "error" object
({"code": <int>, "message": <str>}); it is decoded into the result slot as
an ErrorEnvelope.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Union

from .errors import EncodingError

logger = logging.getLogger(__name__)

JSONValue = Union[None, bool, int, float, str, list["JSONValue"], dict[str, "JSONValue"]]

MAX_ID = 2**64 - 1


@dataclass(frozen=True)
class ErrorEnvelope:
    """Device side RPC error (method not found, invalid params, ...)"""
    code: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class RequestFrame:
    id: int
    source: str
    method: str
    params: JSONValue = None


@dataclass(frozen=True)
class ResponseFrame:
    id: int
    destination: str
    result: JSONValue | ErrorEnvelope = None

    @property
    def is_error(self) -> bool:
        return isinstance(self.result, ErrorEnvelope)


def check_json_value(value: Any, path: str = "$") -> None:
    """
    Make sure `value` is made of JSON types only.

    bool/int/float are kept apart by their Python type, lists keep their
    order and dicts their insertion order, so a checked value survives an
    encode/decode cycle unchanged.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingError(f"{path}: {value} is not representable in JSON")
        return
    if isinstance(value, list):
        for i, item in enumerate(value):
            check_json_value(item, f"{path}[{i}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodingError(f"{path}: object key {key!r} is not a string")
            check_json_value(item, f"{path}.{key}")
        return
    raise EncodingError(f"{path}: {type(value).__name__} is not a JSON value")


def _dumps(obj: dict[str, Any]) -> bytes:
    try:
        return json.dumps(
            obj, separators=(",", ":"), ensure_ascii=False, allow_nan=False
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"marshalling frame: {e}") from e


def _loads(data: bytes) -> dict[str, Any]:
    try:
        obj = json.loads(bytes(data).decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EncodingError(f"unmarshal frame: {e}") from e
    if not isinstance(obj, dict):
        raise EncodingError(f"unmarshal frame: expected JSON object, got {type(obj).__name__}")
    return obj


def _check_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_ID:
        raise EncodingError(f"frame id must be an unsigned 64-bit integer, got {value!r}")
    return value


def _get_id(obj: dict[str, Any]) -> int:
    value = obj.get("id")
    if value is None:
        return 0
    return _check_id(value)


def _get_str(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise EncodingError(f"frame field {key!r} must be a string, got {value!r}")
    return value


def _decode_error(value: Any) -> ErrorEnvelope:
    if not isinstance(value, dict):
        raise EncodingError(f"frame field 'error' must be an object, got {value!r}")
    code = value.get("code", 0)
    if isinstance(code, bool) or not isinstance(code, int):
        raise EncodingError(f"error code must be an integer, got {code!r}")
    return ErrorEnvelope(code=code, message=_get_str(value, "message"))


def encode_request(frame: RequestFrame) -> bytes:
    """Serialize a request frame to compact UTF-8 JSON"""
    _check_id(frame.id)
    check_json_value(frame.params, "$.params")
    return _dumps({
        "id": frame.id,
        "src": frame.source,
        "method": frame.method,
        "params": frame.params,
    })


def decode_request(data: bytes) -> RequestFrame:
    """Parse a request frame, the device side of the exchange"""
    obj = _loads(data)
    return RequestFrame(
        id=_get_id(obj),
        source=_get_str(obj, "src"),
        method=_get_str(obj, "method"),
        params=obj.get("params"),
    )


def encode_response(frame: ResponseFrame) -> bytes:
    """Serialize a response frame, the device side of the exchange"""
    _check_id(frame.id)
    obj: dict[str, Any] = {"id": frame.id, "dst": frame.destination}
    if isinstance(frame.result, ErrorEnvelope):
        obj["error"] = frame.result.to_dict()
    else:
        check_json_value(frame.result, "$.result")
        obj["result"] = frame.result
    return _dumps(obj)


def decode_response(data: bytes) -> ResponseFrame:
    """
    Parse a response frame.

    Missing fields decode to zero values; invalid JSON or mistyped fields
    raise EncodingError.
    """
    obj = _loads(data)
    result: JSONValue | ErrorEnvelope = obj.get("result")
    if obj.get("error") is not None:
        result = _decode_error(obj["error"])

    frame = ResponseFrame(
        id=_get_id(obj),
        destination=_get_str(obj, "dst"),
        result=result,
    )
    logger.debug("Decoded response id=%d dst=%s error=%s",
                 frame.id, frame.destination, frame.is_error)
    return frame
