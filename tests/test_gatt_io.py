"""Tests for chunked characteristic I/O and the length prefix."""

import pytest

from shellyrpc.errors import EncodingError, ShortWriteError, TransportError, TransportReadError
from shellyrpc.gatt_io import decode_length, encode_length, read_chunked, write_chunked, write_once

from tests.mocks import MockCharacteristic


class TestWriteChunked:
    """Test suite for write_chunked()."""

    @pytest.mark.parametrize("size", [19, 20, 21, 60])
    def test_chunks_respect_mtu_boundaries(self, size):
        """Chunks are at most MTU bytes and concatenate back to the input."""
        char = MockCharacteristic(mtu=20)
        data = bytes(i % 256 for i in range(size))

        write_chunked(char, data)

        assert all(len(chunk) <= 20 for chunk in char.writes)
        assert b"".join(char.writes) == data
        assert sum(len(chunk) for chunk in char.writes) == size
        assert len(char.writes) == -(-size // 20)

    def test_53_bytes_at_mtu_20(self):
        """53 bytes go out as 20 + 20 + 13."""
        char = MockCharacteristic(mtu=20)
        write_chunked(char, b"x" * 53)
        assert [len(chunk) for chunk in char.writes] == [20, 20, 13]

    def test_empty_payload_writes_nothing(self):
        char = MockCharacteristic(mtu=20)
        write_chunked(char, b"")
        assert char.writes == []

    def test_short_write_aborts_immediately(self):
        """A short chunk write stops the operation; later chunks are never sent."""
        char = MockCharacteristic(mtu=20, short_write_at=1)

        with pytest.raises(ShortWriteError) as exc_info:
            write_chunked(char, b"x" * 60)

        assert len(char.writes) == 2
        assert exc_info.value.written == 19
        assert exc_info.value.expected == 20
        assert isinstance(exc_info.value, TransportError)

    def test_failing_write_raises_transport_error(self):
        char = MockCharacteristic(mtu=20, fail_write_at=0)
        with pytest.raises(TransportError):
            write_chunked(char, b"x" * 30)
        assert len(char.writes) == 1

    def test_invalid_mtu(self):
        char = MockCharacteristic(mtu=0)
        with pytest.raises(TransportError):
            write_chunked(char, b"x")
        assert char.writes == []


class TestWriteOnce:
    """Test suite for write_once()."""

    def test_single_write(self):
        char = MockCharacteristic(mtu=20)
        write_once(char, b"\x00\x00\x00\x35")
        assert char.writes == [b"\x00\x00\x00\x35"]

    def test_short_write(self):
        char = MockCharacteristic(mtu=20, short_write_at=0)
        with pytest.raises(ShortWriteError):
            write_once(char, b"\x00\x00\x00\x35")


class TestReadChunked:
    """Test suite for read_chunked()."""

    def test_tolerates_partial_and_empty_reads(self):
        char = MockCharacteristic(mtu=20, reads=[b"ab", b"", b"cd", b"e"])
        assert read_chunked(char, 5) == b"abcde"
        assert char.read_sizes == [20, 20, 20, 20]

    def test_truncates_overlong_read(self):
        """A read offering more than still needed never leaks surplus bytes."""
        char = MockCharacteristic(mtu=20, reads=[b"abc", b"defghij"])
        assert read_chunked(char, 5) == b"abcde"

    def test_four_bytes_from_ten_byte_read(self):
        """Exactly 4 bytes are returned even if the first read offers 10."""
        char = MockCharacteristic(mtu=20, reads=[b"0123456789"])
        result = read_chunked(char, 4)
        assert result == b"0123"
        assert len(char.read_sizes) == 1

    def test_zero_length_reads_nothing(self):
        char = MockCharacteristic(mtu=20)
        assert read_chunked(char, 0) == b""
        assert char.read_sizes == []

    def test_read_failure(self):
        char = MockCharacteristic(mtu=20, fail_read=True)
        with pytest.raises(TransportReadError):
            read_chunked(char, 4)

    def test_negative_length(self):
        with pytest.raises(TransportReadError):
            read_chunked(MockCharacteristic(), -1)


class TestLengthPrefix:
    """Test suite for the 4-byte big-endian length prefix."""

    @pytest.mark.parametrize("value", [0, 1, 53, 255, 256, 65535, 2**24, 4294967295])
    def test_bijection(self, value):
        encoded = encode_length(value)
        assert len(encoded) == 4
        assert decode_length(encoded) == value

    def test_big_endian_layout(self):
        assert encode_length(53) == bytes([0, 0, 0, 53])
        assert encode_length(0x01020304) == bytes([1, 2, 3, 4])
        assert decode_length(bytes([0, 0, 0, 4])) == 4

    @pytest.mark.parametrize("value", [-1, 2**32])
    def test_out_of_range(self, value):
        with pytest.raises(EncodingError):
            encode_length(value)

    @pytest.mark.parametrize("data", [b"", b"\x00\x00\x04", b"\x00\x00\x00\x00\x04"])
    def test_wrong_size(self, data):
        with pytest.raises(TransportError):
            decode_length(data)
