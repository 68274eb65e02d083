"""
Code Transport Adapter for QR Signal

Turns fragments into QR codes for display and scanned symbols back into
fragment wire strings.

Rendering uses the qrcode library: PNG through the Pillow image factory, SVG
through the pure SVG path factory, and ASCII for terminals. Decoding pixels is
left to an external decoder; this module only validates what it returns.

Usage:
    transport = CodeTransport(error_correction="Q")
    code = transport.encode_fragment(fragment)
    png = code.to_png()

    wire = transport.decode_symbol(scanned_text)
    if wire is not None:
        buffer.ingest(wire)
"""

import io
import logging
from typing import Any, Callable, Optional, Union

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from qrcode.exceptions import DataOverflowError
from qrcode.image.svg import SvgPathImage

from qrsignal.protocol.chunking import Fragment, is_fragment

logger = logging.getLogger(__name__)


ERROR_CORRECTION_LEVELS = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}

DEFAULT_ERROR_CORRECTION = "Q"
DEFAULT_BOX_SIZE = 10
DEFAULT_BORDER = 4

# Header bounds used when checking a fragment length against QR capacity
WORST_CASE_BATCH_ID_LEN = 32  # uuid4 hex
WORST_CASE_TOTAL = 99999

# Image -> decoded text, e.g. a pyzbar or OpenCV wrapper supplied by the host
SymbolDecoder = Callable[[Any], Optional[Union[str, bytes]]]


LINE_TERMINATORS = ("\r\n", "\n", "\r")


def strip_line_terminator(text: str) -> str:
    """
    Drop one trailing line terminator added by a scanner.

    Only one is removed; anything before it is payload. Compressed payloads
    are Base64 and never end in CR or LF themselves.
    """
    for terminator in LINE_TERMINATORS:
        if text.endswith(terminator):
            return text[:-len(terminator)]
    return text


class RenderableCode:
    """A fragment laid out as a QR symbol, ready to draw."""

    def __init__(self, fragment: Fragment, qr: qrcode.QRCode):
        self.fragment = fragment
        self._qr = qr

    @property
    def text(self) -> str:
        return self.fragment.to_wire()

    @property
    def index(self) -> int:
        return self.fragment.index

    @property
    def total(self) -> int:
        return self.fragment.total

    @property
    def version(self) -> int:
        """QR version (1-40) chosen to fit the wire string."""
        return self._qr.version

    def to_png(self, fill_color: str = "black", back_color: str = "white") -> bytes:
        img = self._qr.make_image(fill_color=fill_color, back_color=back_color)
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    def to_svg(self) -> bytes:
        img = self._qr.make_image(image_factory=SvgPathImage)
        buffer = io.BytesIO()
        img.save(buffer)
        return buffer.getvalue()

    def to_ascii(self, invert: bool = False) -> str:
        out = io.StringIO()
        self._qr.print_ascii(out=out, invert=invert)
        return out.getvalue()


class CodeTransport:
    """
    Maps fragments to QR codes and scanned symbols to wire strings.
    """

    def __init__(self, error_correction: str = DEFAULT_ERROR_CORRECTION,
                 box_size: int = DEFAULT_BOX_SIZE, border: int = DEFAULT_BORDER,
                 decoder: Optional[SymbolDecoder] = None):
        """
        Initialize transport.

        Args:
            error_correction: One of "L", "M", "Q", "H"
            box_size: Pixels per QR module
            border: Quiet zone width in modules
            decoder: Optional image decoder used when decode_symbol gets an image
        """
        level = error_correction.upper()
        if level not in ERROR_CORRECTION_LEVELS:
            raise ValueError(f"Unknown error correction level: {error_correction}")
        if box_size < 1 or border < 0:
            raise ValueError("box_size must be >= 1 and border >= 0")

        self.error_correction = level
        self.box_size = box_size
        self.border = border
        self._decoder = decoder

    def _new_qr(self) -> qrcode.QRCode:
        return qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECTION_LEVELS[self.error_correction],
            box_size=self.box_size,
            border=self.border,
        )

    def fits_payload_len(self, max_fragment_payload_len: int) -> bool:
        """
        Check that any fragment with up to this many payload characters fits
        one symbol at the configured error-correction level.

        Sized against a worst-case header and a byte-mode payload.
        """
        worst = Fragment(
            batch_id="f" * WORST_CASE_BATCH_ID_LEN,
            index=WORST_CASE_TOTAL - 1,
            total=WORST_CASE_TOTAL,
            payload="a" * max_fragment_payload_len,
        )
        qr = self._new_qr()
        qr.add_data(worst.to_wire())
        try:
            qr.best_fit()
        except (DataOverflowError, ValueError):
            return False
        return True

    def encode_fragment(self, fragment: Fragment) -> RenderableCode:
        """
        Build the QR symbol for a fragment.

        Raises:
            ValueError: Wire string does not fit in a version 40 symbol
        """
        qr = self._new_qr()
        qr.add_data(fragment.to_wire())
        # qrcode raises a bare ValueError once best_fit runs past version 40
        try:
            qr.make(fit=True)
        except (DataOverflowError, ValueError) as e:
            raise ValueError(
                f"Fragment {fragment.label} too large for a QR code at level "
                f"{self.error_correction}; lower the fragment length"
            ) from e

        logger.debug("Encoded fragment %s as QR version %d", fragment.label, qr.version)
        return RenderableCode(fragment, qr)

    def decode_symbol(self, symbol: Any) -> Optional[str]:
        """
        Validate a scanned symbol.

        Args:
            symbol: Decoded text (str or bytes), or an image when a decoder
                is configured

        Returns:
            The wire string if it is a well-formed fragment, None otherwise
        """
        if symbol is None:
            return None

        if not isinstance(symbol, (str, bytes, bytearray)):
            if self._decoder is None:
                logger.warning("Got a %s symbol but no image decoder is configured", type(symbol).__name__)
                return None
            try:
                symbol = self._decoder(symbol)
            except Exception as e:
                logger.warning("Image decoder failed: %s", e)
                return None
            if symbol is None:
                return None

        if isinstance(symbol, (bytes, bytearray)):
            try:
                symbol = bytes(symbol).decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("Scanned symbol is not UTF-8 text")
                return None

        text = strip_line_terminator(symbol)
        if not is_fragment(text):
            logger.debug("Ignoring foreign symbol %r", text[:40])
            return None
        return text
