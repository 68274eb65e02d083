"""
Pure-Python DEFLATE Decoder for QR Signal

Decodes RFC 1951 streams wrapped in a gzip (RFC 1952) or zlib (RFC 1950)
container without relying on the zlib module. Used as the fallback path of
PayloadCodec when zlib is missing or rejects a blob.

Supports:
- Stored (uncompressed) blocks
- Fixed Huffman blocks
- Dynamic Huffman blocks, including run-length encoded code-length tables
- Length/distance back-references with extra bits
- gzip header flags (FEXTRA, FNAME, FCOMMENT, FHCRC), multi-member files,
  CRC-32 and ISIZE trailer checks
- zlib header check bits and Adler-32 trailer check

Decoding is canonical-Huffman, one bit at a time. Payloads are a few KB, so
speed is not a concern.

Usage:
    data = inflate(blob)             # gzip or zlib container
    data, end = inflate_raw(stream)  # headerless DEFLATE stream
"""

import binascii
from typing import List, Optional, Tuple

from qrsignal.errors import DecodeFailure


MAX_BITS = 15
MAX_LITLEN_CODES = 286
MAX_DIST_CODES = 30

# Length codes 257..285: base length and number of extra bits
LENGTH_BASE = (
    3, 4, 5, 6, 7, 8, 9, 10, 11, 13, 15, 17, 19, 23, 27, 31,
    35, 43, 51, 59, 67, 83, 99, 115, 131, 163, 195, 227, 258,
)
LENGTH_EXTRA = (
    0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 2, 2, 2, 2,
    3, 3, 3, 3, 4, 4, 4, 4, 5, 5, 5, 5, 0,
)

# Distance codes 0..29: base distance and number of extra bits
DIST_BASE = (
    1, 2, 3, 4, 5, 7, 9, 13, 17, 25, 33, 49, 65, 97, 129, 193,
    257, 385, 513, 769, 1025, 1537, 2049, 3073, 4097, 6145,
    8193, 12289, 16385, 24577,
)
DIST_EXTRA = (
    0, 0, 0, 0, 1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 6, 6,
    7, 7, 8, 8, 9, 9, 10, 10, 11, 11, 12, 12, 13, 13,
)

# Permutation of code length code lengths in a dynamic block header
CODE_LENGTH_ORDER = (16, 17, 18, 0, 8, 7, 9, 6, 10, 5, 11, 4, 12, 3, 13, 2, 14, 1, 15)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_FHCRC = 0x02
GZIP_FEXTRA = 0x04
GZIP_FNAME = 0x08
GZIP_FCOMMENT = 0x10
GZIP_RESERVED = 0xE0

ADLER_MOD = 65521
ADLER_NMAX = 5552


class BitReader:
    """LSB-first bit reader over a byte buffer."""

    def __init__(self, data: bytes, pos: int = 0):
        self.data = data
        self.pos = pos
        self._bitbuf = 0
        self._bitcnt = 0

    def bits(self, need: int) -> int:
        """Read `need` bits, least significant first."""
        val = self._bitbuf
        while self._bitcnt < need:
            if self.pos >= len(self.data):
                raise DecodeFailure("unexpected end of stream", self.pos)
            val |= self.data[self.pos] << self._bitcnt
            self.pos += 1
            self._bitcnt += 8
        self._bitbuf = val >> need
        self._bitcnt -= need
        return val & ((1 << need) - 1)

    def align(self):
        """Drop the rest of the current byte."""
        self._bitbuf = 0
        self._bitcnt = 0


class Huffman:
    """
    Canonical Huffman decoding table.

    counts[n] is the number of symbols with an n-bit code, symbols lists the
    symbols ordered by code. Built from a list of per-symbol code lengths.
    """

    def __init__(self, lengths: List[int]):
        self.counts = [0] * (MAX_BITS + 1)
        for length in lengths:
            self.counts[length] += 1

        # Codes left over after assigning every length; negative means
        # over-subscribed, positive means incomplete
        left = 1
        for length in range(1, MAX_BITS + 1):
            left <<= 1
            left -= self.counts[length]
            if left < 0:
                raise DecodeFailure("over-subscribed Huffman code")
        self.left = left

        offsets = [0] * (MAX_BITS + 2)
        for length in range(1, MAX_BITS + 1):
            offsets[length + 1] = offsets[length] + self.counts[length]

        self.symbols = [0] * len(lengths)
        for symbol, length in enumerate(lengths):
            if length:
                self.symbols[offsets[length]] = symbol
                offsets[length] += 1

        self.size = len(lengths)

    @property
    def is_complete(self) -> bool:
        return self.left == 0

    @property
    def is_single_code(self) -> bool:
        """True when the table holds exactly one code of length 1 (or none)."""
        return self.size == self.counts[0] + self.counts[1] and self.counts[1] <= 1

    def decode(self, reader: BitReader) -> int:
        code = 0
        first = 0
        index = 0
        for length in range(1, MAX_BITS + 1):
            code |= reader.bits(1)
            count = self.counts[length]
            if code - count < first:
                return self.symbols[index + (code - first)]
            index += count
            first += count
            first <<= 1
            code <<= 1
        raise DecodeFailure("invalid Huffman code", reader.pos)


_fixed_tables: Optional[Tuple[Huffman, Huffman]] = None


def _fixed() -> Tuple[Huffman, Huffman]:
    global _fixed_tables
    if _fixed_tables is None:
        litlen = [8] * 144 + [9] * 112 + [7] * 24 + [8] * 8
        _fixed_tables = (Huffman(litlen), Huffman([5] * MAX_DIST_CODES))
    return _fixed_tables


def _stored(reader: BitReader, out: bytearray):
    reader.align()
    data = reader.data
    pos = reader.pos
    if pos + 4 > len(data):
        raise DecodeFailure("truncated stored block header", pos)
    length = data[pos] | (data[pos + 1] << 8)
    nlength = data[pos + 2] | (data[pos + 3] << 8)
    if length != (~nlength & 0xFFFF):
        raise DecodeFailure("stored block length does not match its complement", pos)
    pos += 4
    if pos + length > len(data):
        raise DecodeFailure("truncated stored block", pos)
    out += data[pos:pos + length]
    reader.pos = pos + length


def _codes(reader: BitReader, out: bytearray, litlen: Huffman, dist: Huffman):
    while True:
        symbol = litlen.decode(reader)
        if symbol < 256:
            out.append(symbol)
            continue
        if symbol == 256:
            return

        symbol -= 257
        if symbol >= len(LENGTH_BASE):
            raise DecodeFailure(f"invalid length symbol {symbol + 257}", reader.pos)
        length = LENGTH_BASE[symbol] + reader.bits(LENGTH_EXTRA[symbol])

        symbol = dist.decode(reader)
        if symbol >= MAX_DIST_CODES:
            raise DecodeFailure(f"invalid distance symbol {symbol}", reader.pos)
        distance = DIST_BASE[symbol] + reader.bits(DIST_EXTRA[symbol])
        if distance > len(out):
            raise DecodeFailure("back-reference distance too far back", reader.pos)

        start = len(out) - distance
        if distance >= length:
            out += out[start:start + length]
        else:
            # Overlapping copy repeats the last `distance` bytes
            for i in range(length):
                out.append(out[start + i])


def _dynamic_tables(reader: BitReader) -> Tuple[Huffman, Huffman]:
    nlen = reader.bits(5) + 257
    ndist = reader.bits(5) + 1
    ncode = reader.bits(4) + 4
    if nlen > MAX_LITLEN_CODES or ndist > MAX_DIST_CODES:
        raise DecodeFailure("too many length or distance codes", reader.pos)

    code_lengths = [0] * 19
    for i in range(ncode):
        code_lengths[CODE_LENGTH_ORDER[i]] = reader.bits(3)
    lencode = Huffman(code_lengths)
    if not lencode.is_complete:
        raise DecodeFailure("incomplete code length code", reader.pos)

    lengths: List[int] = []
    wanted = nlen + ndist
    while len(lengths) < wanted:
        symbol = lencode.decode(reader)
        if symbol < 16:
            lengths.append(symbol)
            continue
        if symbol == 16:
            if not lengths:
                raise DecodeFailure("repeat code with no previous length", reader.pos)
            value = lengths[-1]
            repeat = 3 + reader.bits(2)
        elif symbol == 17:
            value = 0
            repeat = 3 + reader.bits(3)
        else:
            value = 0
            repeat = 11 + reader.bits(7)
        if len(lengths) + repeat > wanted:
            raise DecodeFailure("code length repeat overruns table", reader.pos)
        lengths.extend([value] * repeat)

    if lengths[256] == 0:
        raise DecodeFailure("missing end-of-block code", reader.pos)

    litlen = Huffman(lengths[:nlen])
    if not litlen.is_complete and not litlen.is_single_code:
        raise DecodeFailure("incomplete literal/length code", reader.pos)
    dist = Huffman(lengths[nlen:])
    if not dist.is_complete and not dist.is_single_code:
        raise DecodeFailure("incomplete distance code", reader.pos)
    return litlen, dist


def inflate_raw(data: bytes, start: int = 0) -> Tuple[bytes, int]:
    """
    Decode a headerless DEFLATE stream.

    Args:
        data: Buffer holding the stream
        start: Offset of the first block

    Returns:
        Tuple[bytes, int]: (decoded bytes, offset of the first byte after the stream)
    """
    reader = BitReader(data, start)
    out = bytearray()
    while True:
        last = reader.bits(1)
        block_type = reader.bits(2)
        if block_type == 0:
            _stored(reader, out)
        elif block_type == 1:
            litlen, dist = _fixed()
            _codes(reader, out, litlen, dist)
        elif block_type == 2:
            litlen, dist = _dynamic_tables(reader)
            _codes(reader, out, litlen, dist)
        else:
            raise DecodeFailure("invalid block type 3", reader.pos)
        if last:
            break
    return bytes(out), reader.pos


def adler32(data: bytes) -> int:
    a, b = 1, 0
    for i in range(0, len(data), ADLER_NMAX):
        for byte in data[i:i + ADLER_NMAX]:
            a += byte
            b += a
        a %= ADLER_MOD
        b %= ADLER_MOD
    return (b << 16) | a


def _skip_zero_terminated(data: bytes, pos: int) -> int:
    end = data.find(b"\x00", pos)
    if end < 0:
        raise DecodeFailure("unterminated gzip header string", pos)
    return end + 1


def _gzip_member(data: bytes, pos: int) -> Tuple[bytes, int]:
    if len(data) - pos < 18:
        raise DecodeFailure("truncated gzip member", pos)
    if data[pos:pos + 2] != GZIP_MAGIC:
        raise DecodeFailure("bad gzip magic", pos)
    if data[pos + 2] != 8:
        raise DecodeFailure(f"unsupported gzip compression method {data[pos + 2]}", pos + 2)
    flags = data[pos + 3]
    if flags & GZIP_RESERVED:
        raise DecodeFailure("reserved gzip flag bits set", pos + 3)

    body = pos + 10
    if flags & GZIP_FEXTRA:
        if body + 2 > len(data):
            raise DecodeFailure("truncated gzip extra field", body)
        body += 2 + (data[body] | (data[body + 1] << 8))
    if flags & GZIP_FNAME:
        body = _skip_zero_terminated(data, body)
    if flags & GZIP_FCOMMENT:
        body = _skip_zero_terminated(data, body)
    if flags & GZIP_FHCRC:
        body += 2
    if body > len(data):
        raise DecodeFailure("gzip header runs past end of data", body)

    out, end = inflate_raw(data, body)
    if end + 8 > len(data):
        raise DecodeFailure("truncated gzip trailer", end)
    crc = int.from_bytes(data[end:end + 4], "little")
    size = int.from_bytes(data[end + 4:end + 8], "little")
    if binascii.crc32(out) & 0xFFFFFFFF != crc:
        raise DecodeFailure("gzip CRC-32 mismatch", end)
    if len(out) & 0xFFFFFFFF != size:
        raise DecodeFailure("gzip ISIZE mismatch", end + 4)
    return out, end + 8


def inflate_gzip(data: bytes) -> bytes:
    """Decode one or more concatenated gzip members."""
    out, pos = _gzip_member(data, 0)
    parts = [out]
    # Trailing bytes that are not another member are ignored, like gunzip does
    while data[pos:pos + 2] == GZIP_MAGIC:
        out, pos = _gzip_member(data, pos)
        parts.append(out)
    return b"".join(parts)


def is_zlib_header(data: bytes) -> bool:
    if len(data) < 2:
        return False
    cmf, flg = data[0], data[1]
    return (cmf & 0x0F) == 8 and (cmf >> 4) <= 7 and ((cmf << 8) | flg) % 31 == 0


def inflate_zlib(data: bytes) -> bytes:
    """Decode a zlib stream and verify its Adler-32 trailer."""
    if not is_zlib_header(data):
        raise DecodeFailure("bad zlib header", 0)
    if data[1] & 0x20:
        raise DecodeFailure("zlib preset dictionaries are not supported", 1)
    out, end = inflate_raw(data, 2)
    if end + 4 > len(data):
        raise DecodeFailure("truncated zlib trailer", end)
    if adler32(out) != int.from_bytes(data[end:end + 4], "big"):
        raise DecodeFailure("zlib Adler-32 mismatch", end)
    return out


def inflate(data: bytes) -> bytes:
    """
    Decode a gzip or zlib container.

    Args:
        data: Compressed bytes

    Returns:
        bytes: Decompressed data

    Raises:
        DecodeFailure: Unknown container header or corrupt stream
    """
    if data[:2] == GZIP_MAGIC:
        return inflate_gzip(data)
    if is_zlib_header(data):
        return inflate_zlib(data)
    raise DecodeFailure("unrecognized container header", 0)
