"""
Roundtrip engine: one length-prefixed request/response exchange.

Order of operations on a connection, strictly sequential:

    1. encode request frame
    2. TX ctrl  <- 4-byte big-endian request length (single write)
    3. data     <- request payload (chunked)
    4. RX ctrl  -> 4-byte big-endian response length
    5. data     -> response payload (chunked)
    6. decode response frame

The data characteristic is only ever written then read, never both at
once, and a connection carries at most one outstanding request. Callers
sharing a connection between threads must serialize access themselves.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from .errors import ShellyRPCError
from .frames import RequestFrame, ResponseFrame, decode_response, encode_request
from .gatt_io import (
    LENGTH_PREFIX_SIZE,
    Characteristic,
    decode_length,
    encode_length,
    read_chunked,
    write_chunked,
    write_once,
)

logger = logging.getLogger(__name__)

PHASE_ENCODE = "marshalling request"
PHASE_TX_LENGTH = "write request length to TX control characteristic"
PHASE_TX_DATA = "write request to data characteristic"
PHASE_RX_LENGTH = "read response length from RX control characteristic"
PHASE_RX_DATA = "read response from data characteristic"
PHASE_DECODE = "unmarshal response"


@dataclass(frozen=True)
class Connection:
    """
    The three characteristic handles of one connected device.

    `device` is owned by the connection manager that produced the
    connection and is only used to tear it down.
    """
    data: Characteristic
    tx_ctrl: Characteristic
    rx_ctrl: Characteristic
    address: str = ""
    device: Any = field(default=None, repr=False, compare=False)


@contextmanager
def _phase(name: str) -> Iterator[None]:
    try:
        yield
    except ShellyRPCError as e:
        if e.phase is None:
            e.phase = name
        logger.debug("Roundtrip failed in phase '%s': %s", name, e.message)
        raise


def roundtrip(connection: Connection, request: RequestFrame) -> ResponseFrame:
    """
    Send `request` over `connection` and read back the response frame.

    No correlation checks are made here; see RPCClient.call for that.

    Raises:
        ShellyRPCError: any step failed; `phase` names the step
    """
    with _phase(PHASE_ENCODE):
        payload = encode_request(request)
        length_prefix = encode_length(len(payload))

    logger.debug("➡️  id=%d method=%s (%d bytes)", request.id, request.method, len(payload))

    with _phase(PHASE_TX_LENGTH):
        write_once(connection.tx_ctrl, length_prefix)

    with _phase(PHASE_TX_DATA):
        write_chunked(connection.data, payload)

    with _phase(PHASE_RX_LENGTH):
        response_length = decode_length(read_chunked(connection.rx_ctrl, LENGTH_PREFIX_SIZE))

    with _phase(PHASE_RX_DATA):
        response_payload = read_chunked(connection.data, response_length)

    logger.debug("⬅️  %d bytes", response_length)

    with _phase(PHASE_DECODE):
        return decode_response(response_payload)
