import gzip
import os
import zlib

import pytest

from qrsignal.codec.inflate import adler32, inflate, inflate_gzip, inflate_raw, inflate_zlib
from qrsignal.errors import DecodeFailure

# zlib container, one stored block holding b"hi"
ZLIB_STORED_HI = bytes.fromhex("7801" "0102 00fd ff 6869" "013b00d2")
# zlib container, fixed Huffman block holding b"a"
ZLIB_FIXED_A = bytes.fromhex("789c" "4b0400" "00620062")
# gzip member holding b"a": header, fixed block, CRC-32, ISIZE
GZIP_A = bytes.fromhex("1f8b 08 00 00000000 00 ff" "4b0400" "43beb7e8" "01000000")

CANDIDATE_TEXT = "".join(
    f"a=candidate:{i} 1 udp {2122260223 - i} 192.168.{i % 255}.{i * 7 % 255} {50000 + i} typ host\r\n"
    for i in range(200)
).encode()


def block_type(zlib_stream: bytes) -> int:
    return (zlib_stream[2] >> 1) & 3


class TestReferenceVectors:
    """Hand-built streams with known contents."""

    def test_stored_block(self):
        assert inflate_zlib(ZLIB_STORED_HI) == b"hi"

    def test_fixed_block(self):
        assert inflate_zlib(ZLIB_FIXED_A) == b"a"

    def test_gzip_member(self):
        assert inflate_gzip(GZIP_A) == b"a"

    def test_auto_detects_container(self):
        assert inflate(GZIP_A) == b"a"
        assert inflate(ZLIB_FIXED_A) == b"a"

    def test_raw_stream_reports_end_offset(self):
        out, end = inflate_raw(ZLIB_FIXED_A, 2)
        assert out == b"a"
        assert end == 5

    def test_adler32_matches_zlib(self):
        for data in (b"", b"hi", CANDIDATE_TEXT, bytes(range(256)) * 40):
            assert adler32(data) == zlib.adler32(data)


class TestAgainstZlib:
    """Streams produced by the standard library at test time."""

    def test_dynamic_block(self):
        packed = zlib.compress(CANDIDATE_TEXT, 9)
        assert block_type(packed) == 2
        assert inflate_zlib(packed) == CANDIDATE_TEXT

    def test_stored_blocks(self):
        packed = zlib.compress(CANDIDATE_TEXT, 0)
        assert block_type(packed) == 0
        assert inflate_zlib(packed) == CANDIDATE_TEXT

    def test_multiple_stored_blocks(self):
        data = os.urandom(70000)
        assert inflate_zlib(zlib.compress(data, 0)) == data

    def test_long_matches(self):
        data = b"a=ice-ufrag:Xq7z\r\n" * 2000
        assert inflate_zlib(zlib.compress(data, 9)) == data

    def test_gzip_module_output(self):
        assert inflate(gzip.compress(CANDIDATE_TEXT)) == CANDIDATE_TEXT

    def test_empty_payload(self):
        assert inflate(zlib.compress(b"")) == b""
        assert inflate(gzip.compress(b"")) == b""

    def test_multi_member_gzip(self):
        assert inflate_gzip(GZIP_A + gzip.compress(b"bc")) == b"abc"

    def test_trailing_garbage_ignored(self):
        assert inflate_gzip(GZIP_A + b"\x00\x00junk") == b"a"

    def test_gzip_header_with_file_name(self):
        header = bytes.fromhex("1f8b 08 08 00000000 00 ff") + b"offer.json\x00"
        assert inflate_gzip(header + GZIP_A[10:]) == b"a"


class TestCorruptInput:
    """Every structural error surfaces as DecodeFailure."""

    def test_unknown_container(self):
        with pytest.raises(DecodeFailure, match="unrecognized container"):
            inflate(b"hello world")

    def test_bad_adler(self):
        corrupt = ZLIB_FIXED_A[:-1] + b"\x00"
        with pytest.raises(DecodeFailure, match="Adler-32"):
            inflate_zlib(corrupt)

    def test_bad_crc(self):
        corrupt = GZIP_A[:13] + b"\x00\x00\x00\x00" + GZIP_A[17:]
        with pytest.raises(DecodeFailure, match="CRC-32"):
            inflate_gzip(corrupt)

    def test_bad_isize(self):
        corrupt = GZIP_A[:-4] + b"\x02\x00\x00\x00"
        with pytest.raises(DecodeFailure, match="ISIZE"):
            inflate_gzip(corrupt)

    def test_invalid_block_type(self):
        with pytest.raises(DecodeFailure, match="block type 3"):
            inflate_raw(b"\x07\x00\x00")

    def test_stored_length_mismatch(self):
        with pytest.raises(DecodeFailure):
            inflate_zlib(bytes.fromhex("7801" "0102 00ff ff 6869" "013b00d2"))

    def test_truncated_stream(self):
        packed = zlib.compress(CANDIDATE_TEXT, 9)
        with pytest.raises(DecodeFailure):
            inflate_zlib(packed[: len(packed) // 2])

    def test_preset_dictionary_rejected(self):
        with pytest.raises(DecodeFailure, match="dictionaries"):
            inflate_zlib(bytes.fromhex("78bb") + b"\x00" * 8)
