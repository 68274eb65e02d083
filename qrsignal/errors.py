"""
Typed errors for QR Signal.

Per-fragment errors (ParseError, BatchConflict, PayloadError) are non-fatal:
the scan is dropped and scanning continues. NegotiationFailure ends the
current handshake session.
"""


class QRSignalError(Exception):
    """Base exception for all QR Signal errors."""


class DecodeFailure(QRSignalError):
    """Raised by the pure-Python inflater when a container or stream is malformed."""

    def __init__(self, reason: str, offset: int = -1):
        self.reason = reason
        self.offset = offset
        where = f" at byte {offset}" if offset >= 0 else ""
        super().__init__(f"Cannot decode compressed data{where}: {reason}")


class ParseError(QRSignalError):
    """Raised when a scanned string is not a valid fragment."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        self.reason = reason
        preview = raw if len(raw) <= 40 else raw[:40] + "..."
        super().__init__(f"Malformed fragment {preview!r}: {reason}")


class BatchConflict(QRSignalError):
    """Raised when a fragment's total disagrees with the batch being assembled."""

    def __init__(self, batch_id: str, expected_total: int, actual_total: int):
        self.batch_id = batch_id
        self.expected_total = expected_total
        self.actual_total = actual_total
        super().__init__(
            f"Fragment for batch {batch_id} declares total={actual_total}, "
            f"batch was started with total={expected_total}"
        )


class PayloadError(QRSignalError):
    """Raised when a reassembled payload fails its sanity check."""


class NegotiationFailure(QRSignalError):
    """Raised by a peer transport that rejected a description or candidate."""
