"""
Chunked I/O over MTU-limited GATT characteristics.

A characteristic moves at most `get_mtu()` bytes per read or write. The
helpers here turn that into a byte stream: `write_chunked` splits a payload
into MTU sized writes, `read_chunked` keeps reading until a requested number
of bytes has arrived. The 4-byte big-endian length prefix used on the
control characteristics lives here as well.
"""

import logging
from abc import ABC, abstractmethod
from struct import error as StructError
from struct import pack, unpack

from .errors import EncodingError, ShortWriteError, TransportError, TransportReadError

logger = logging.getLogger(__name__)

LENGTH_PREFIX_SIZE = 4


class Characteristic(ABC):
    """
    A GATT characteristic handle as seen by the protocol core.

    Implementations block for the duration of each radio transaction.
    """

    @abstractmethod
    def read(self, size: int) -> bytes:
        """
        Read up to `size` bytes from the characteristic.

        Returns:
            Between 0 and `size` bytes
        """

    @abstractmethod
    def write_without_response(self, data: bytes) -> int:
        """
        Write `data` as a single unacknowledged GATT write.

        Returns:
            Number of bytes the stack accepted
        """

    @abstractmethod
    def get_mtu(self) -> int:
        """Largest payload a single read or write may carry."""


def encode_length(length: int) -> bytes:
    """Encode a payload length as 4 bytes, big-endian"""
    try:
        return pack(">I", length)
    except StructError as e:
        raise EncodingError(
            f"payload length {length} does not fit the 4-byte length prefix"
        ) from e


def decode_length(data: bytes) -> int:
    """Decode a 4-byte big-endian length prefix"""
    if len(data) != LENGTH_PREFIX_SIZE:
        raise TransportError(
            f"length prefix must be {LENGTH_PREFIX_SIZE} bytes, got {len(data)}"
        )
    [length] = unpack(">I", data)
    return length


def _get_mtu(char: Characteristic) -> int:
    try:
        mtu = char.get_mtu()
    except (TransportError, OSError) as e:
        raise TransportError(f"get MTU: {e}") from e
    if mtu < 1:
        raise TransportError(f"invalid MTU {mtu}")
    return mtu


def write_once(char: Characteristic, chunk: bytes) -> None:
    """
    Write `chunk` in a single GATT write.

    Raises:
        ShortWriteError: fewer bytes were reported as written
        TransportError: the write itself failed
    """
    try:
        written = char.write_without_response(chunk)
    except ShortWriteError:
        raise
    except (TransportError, OSError) as e:
        raise TransportError(f"write chunk to characteristic: {e}") from e

    if written != len(chunk):
        raise ShortWriteError(written, len(chunk))


def write_chunked(char: Characteristic, data: bytes) -> None:
    """
    Write `data` to `char` in order, in chunks of at most MTU bytes.

    The first short or failed chunk write aborts the whole operation; no
    further chunks are sent.
    """
    mtu = _get_mtu(char)
    view = memoryview(data)
    chunks = 0

    while len(view) > 0:
        chunk = bytes(view[:mtu])
        write_once(char, chunk)
        view = view[len(chunk):]
        chunks += 1

    logger.debug("Wrote %d bytes in %d chunk(s) (mtu=%d)", len(data), chunks, mtu)


def read_chunked(char: Characteristic, length: int) -> bytes:
    """
    Read exactly `length` bytes from `char`.

    Underlying reads may return anywhere between 0 and MTU bytes. If the
    last read overshoots, only the first `length` bytes are returned.
    """
    if length < 0:
        raise TransportReadError(f"invalid read length {length}")

    mtu = _get_mtu(char)
    buf = bytearray()
    reads = 0

    while len(buf) < length:
        try:
            chunk = char.read(mtu)
        except (TransportError, OSError) as e:
            raise TransportReadError(f"read from characteristic: {e}") from e
        buf += chunk
        reads += 1

    if len(buf) > length:
        logger.debug("Discarding %d surplus byte(s) past requested length %d",
                     len(buf) - length, length)

    logger.debug("Read %d bytes in %d read(s) (mtu=%d)", length, reads, mtu)
    return bytes(buf[:length])
