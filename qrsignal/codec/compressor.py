"""
Payload Compression Module for QR Signal

Compresses session descriptions and candidate lists before they are split
into QR fragments. Output is Base64 text of a gzip member, which any QR
encoder can carry.

Decompression tries, in order:
1. zlib (gzip or zlib container)
2. the pure-Python inflater (qrsignal.codec.inflate)
3. identity: the decoded Base64 bytes are the UTF-8 text itself

Usage:
    blob = compress(sdp_json)
    text = decompress(blob)

    # Identity-only codec, e.g. on an interpreter built without zlib
    codec = PayloadCodec(backend=None)
"""

import base64
import binascii
import logging
import zlib
from typing import Optional

from qrsignal.codec.inflate import inflate
from qrsignal.errors import DecodeFailure

logger = logging.getLogger(__name__)


# zlib wbits selecting the gzip container on compress, gzip-or-zlib on decompress
GZIP_WBITS = 31
AUTO_WBITS = 47
DEFAULT_LEVEL = 9


class PayloadCodec:
    """
    Reversible text <-> Base64 blob codec.

    compress() never fails: without a backend it emits the identity encoding.
    decompress() never raises: malformed input degrades to best-effort text.
    """

    def __init__(self, backend=zlib, level: int = DEFAULT_LEVEL):
        """
        Initialize codec.

        Args:
            backend: Module exposing the zlib API, or None for identity-only
            level: Compression level 0-9
        """
        if not 0 <= level <= 9:
            raise ValueError(f"Compression level must be 0-9, got {level}")
        self._backend = backend
        self.level = level

    @property
    def has_backend(self) -> bool:
        return self._backend is not None

    def compress(self, text: str) -> str:
        """
        Compress text to a Base64 blob.

        Args:
            text: Payload text (any Unicode)

        Returns:
            str: Base64 blob, "" for empty input
        """
        if not text:
            return ""

        data = text.encode("utf-8")
        if self._backend is None:
            logger.debug("No compression backend, using identity encoding for %d bytes", len(data))
            return base64.b64encode(data).decode("ascii")

        try:
            compressor = self._backend.compressobj(self.level, self._backend.DEFLATED, GZIP_WBITS)
            packed = compressor.compress(data) + compressor.flush()
        except (self._backend.error, ValueError) as e:
            logger.warning("Compression failed (%s), using identity encoding", e)
            packed = data
        return base64.b64encode(packed).decode("ascii")

    def decompress(self, blob: str) -> str:
        """
        Decompress a Base64 blob back to text.

        Args:
            blob: Output of compress() (or of a compatible peer)

        Returns:
            str: Decoded text; callers must sanity-check it
        """
        if not blob:
            return ""

        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Blob is not valid Base64, returning it unchanged")
            return blob

        return self.decompress_bytes(raw).decode("utf-8", errors="replace")

    def decompress_bytes(self, raw: bytes) -> bytes:
        data = self._backend_decompress(raw)
        if data is not None:
            return data

        try:
            return inflate(raw)
        except DecodeFailure as e:
            logger.debug("Fallback inflater rejected blob (%s), treating it as identity-encoded", e.reason)
            return raw

    def _backend_decompress(self, raw: bytes) -> Optional[bytes]:
        if self._backend is None:
            return None
        try:
            return self._backend.decompress(raw, AUTO_WBITS)
        except self._backend.error as e:
            logger.debug("zlib could not decompress blob: %s", e)
            return None


# Module-level codec used by the convenience functions
_default_codec = PayloadCodec()


def compress(text: str) -> str:
    """Compress text with the default codec."""
    return _default_codec.compress(text)


def decompress(blob: str) -> str:
    """Decompress a blob with the default codec."""
    return _default_codec.decompress(blob)
