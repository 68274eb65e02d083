"""
QR Chunking Module for QR Signal

Splits a compressed payload into fragments small enough for one QR code each
and reassembles them on the scanning side.

Constraints:
- Max 800 characters of payload per fragment by default
- Format: {batch_id}|{index}|{total}|{payload}
- index is 0-based; payload is the remainder of the line and may contain '|'

Reassembly tolerates any scan order, repeated scans of the same code, and
scans of a newer batch (which replace the older, partially scanned one).

Usage:
    # Splitting (display side)
    fragments = split(blob, max_fragment_payload_len=800)
    wires = [f.to_wire() for f in fragments]

    # Reassembly (scanning side)
    buffer = ReassemblyBuffer()
    for scanned in scans:
        ingest(buffer, scanned)
        blob = try_reassemble(buffer)
        if blob is not None:
            break
"""

import logging
import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from qrsignal.errors import BatchConflict, ParseError

logger = logging.getLogger(__name__)


# Protocol constants
FRAGMENT_SEPARATOR = "|"
MAX_FRAGMENT_PAYLOAD_LEN = 800  # characters, Base64 blob text
HEADER_FIELDS = 3  # batch_id, index, total


@dataclass(frozen=True)
class Fragment:
    """One addressable piece of a split payload."""
    batch_id: str
    index: int
    total: int
    payload: str

    def to_wire(self) -> str:
        """Serialize to the pipe-delimited wire string."""
        return FRAGMENT_SEPARATOR.join(
            (self.batch_id, str(self.index), str(self.total), self.payload)
        )

    @property
    def label(self) -> str:
        """1-based position for display, e.g. '2/5'."""
        return f"{self.index + 1}/{self.total}"


def _parse_count(raw: str, text: str, name: str) -> int:
    # isdigit() accepts non-ASCII digits, which int() would also accept
    if not raw or not (raw.isascii() and raw.isdigit()):
        raise ParseError(raw=text, reason=f"{name} is not a decimal integer")
    return int(raw)


def parse_fragment(text: str) -> Fragment:
    """
    Parse a wire string.

    Args:
        text: Raw string decoded from a QR code

    Returns:
        Fragment

    Raises:
        ParseError: Wrong shape, non-numeric header fields, total == 0,
            or index outside [0, total)
    """
    parts = text.split(FRAGMENT_SEPARATOR, HEADER_FIELDS)
    if len(parts) != HEADER_FIELDS + 1:
        raise ParseError(raw=text, reason="expected batch_id|index|total|payload")

    batch_id, index_raw, total_raw, payload = parts
    if not batch_id:
        raise ParseError(raw=text, reason="empty batch_id")

    index = _parse_count(index_raw, text, "index")
    total = _parse_count(total_raw, text, "total")
    if total < 1:
        raise ParseError(raw=text, reason="total must be at least 1")
    if index >= total:
        raise ParseError(raw=text, reason=f"index {index} out of range for total {total}")

    return Fragment(batch_id=batch_id, index=index, total=total, payload=payload)


def is_fragment(text: str) -> bool:
    """Check if a string is a well-formed fragment."""
    try:
        parse_fragment(text)
    except ParseError:
        return False
    return True


def new_batch_id() -> str:
    return uuid.uuid4().hex


def split(text: str, max_fragment_payload_len: int = MAX_FRAGMENT_PAYLOAD_LEN,
          batch_id: Optional[str] = None) -> List[Fragment]:
    """
    Split text into an ordered batch of fragments.

    Args:
        text: Payload to split (normally a compressed blob)
        max_fragment_payload_len: Max payload characters per fragment
        batch_id: Batch token (fresh UUID hex if not provided)

    Returns:
        List[Fragment]: Fragments in index order; at least one, even for ""
    """
    if max_fragment_payload_len < 1:
        raise ValueError("max_fragment_payload_len must be at least 1")
    if batch_id is None:
        batch_id = new_batch_id()
    elif not batch_id or FRAGMENT_SEPARATOR in batch_id:
        raise ValueError(f"batch_id must be non-empty and must not contain {FRAGMENT_SEPARATOR!r}")

    total = max(1, math.ceil(len(text) / max_fragment_payload_len))
    fragments = []
    for i in range(total):
        start = i * max_fragment_payload_len
        end = min(start + max_fragment_payload_len, len(text))
        fragments.append(Fragment(batch_id=batch_id, index=i, total=total, payload=text[start:end]))

    logger.debug("Split %d chars into %d fragment(s), batch %s", len(text), total, batch_id)
    return fragments


class IngestStatus(str, Enum):
    ADDED = "added"              # new slot filled
    DUPLICATE = "duplicate"      # same payload already held
    OVERWRITTEN = "overwritten"  # slot held a different payload, last scan wins


@dataclass
class IngestResult:
    """Outcome of ingesting one fragment."""
    status: IngestStatus
    fragment: Fragment
    received: int
    total: int
    replaced_batch_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.received == self.total

    @property
    def progress_message(self) -> str:
        return f"{self.received} of {self.total} chunks received"


class ReassemblyBuffer:
    """
    Collects fragments of one batch until it is complete.

    Holds at most one batch. A fragment from another batch discards the
    current one; a fragment whose total disagrees with the current batch is
    rejected without touching the buffer.
    """

    def __init__(self):
        """Initialize with an empty buffer."""
        self.reset()

    def reset(self):
        """Clear buffer and start fresh."""
        self._batch_id: Optional[str] = None
        self._total: Optional[int] = None
        self._fragments: Dict[int, str] = {}

    @property
    def batch_id(self) -> Optional[str]:
        return self._batch_id

    @property
    def total(self) -> Optional[int]:
        return self._total

    @property
    def is_empty(self) -> bool:
        return self._batch_id is None

    @property
    def is_complete(self) -> bool:
        """Check if all fragments of the batch are held."""
        return self._total is not None and len(self._fragments) == self._total

    @property
    def progress(self) -> Tuple[int, int]:
        """Get progress as (received, total); total is 0 before the first fragment."""
        return (len(self._fragments), self._total or 0)

    @property
    def progress_message(self) -> str:
        received, total = self.progress
        if not total:
            return "No chunks received"
        return f"{received} of {total} chunks received"

    @property
    def missing_indices(self) -> List[int]:
        """Get list of missing 0-based fragment indices."""
        if self._total is None:
            return []
        return [i for i in range(self._total) if i not in self._fragments]

    def add(self, fragment: Fragment) -> IngestResult:
        """
        Add a parsed fragment.

        Raises:
            BatchConflict: Same batch, different total
        """
        replaced = None
        if self._batch_id != fragment.batch_id:
            if self._batch_id is not None:
                replaced = self._batch_id
                logger.info(
                    "New batch %s replaces partial batch %s (%s)",
                    fragment.batch_id, replaced, self.progress_message,
                )
            self._batch_id = fragment.batch_id
            self._total = fragment.total
            self._fragments = {}
        elif self._total != fragment.total:
            raise BatchConflict(fragment.batch_id, self._total, fragment.total)

        held = self._fragments.get(fragment.index)
        if held is None:
            status = IngestStatus.ADDED
        elif held == fragment.payload:
            status = IngestStatus.DUPLICATE
        else:
            status = IngestStatus.OVERWRITTEN
            logger.warning("Fragment %s of batch %s rescanned with a different payload", fragment.label, fragment.batch_id)
        self._fragments[fragment.index] = fragment.payload

        received, total = self.progress
        return IngestResult(
            status=status,
            fragment=fragment,
            received=received,
            total=total,
            replaced_batch_id=replaced,
        )

    def ingest(self, text: str) -> IngestResult:
        """
        Parse a scanned wire string and add it.

        Raises:
            ParseError: Malformed wire string (buffer unchanged)
            BatchConflict: Same batch, different total (buffer unchanged)
        """
        return self.add(parse_fragment(text))

    def try_reassemble(self) -> Optional[str]:
        """Return the reassembled string if complete, None otherwise."""
        if not self.is_complete:
            return None
        return "".join(self._fragments[i] for i in range(self._total))


def ingest(buffer: ReassemblyBuffer, fragment_string: str) -> IngestResult:
    """Parse a wire string and add it to the buffer."""
    return buffer.ingest(fragment_string)


def try_reassemble(buffer: ReassemblyBuffer) -> Optional[str]:
    """Reassemble the buffer's batch, or None while incomplete."""
    return buffer.try_reassemble()


def reassemble(fragment_strings: List[str]) -> Optional[str]:
    """
    One-call reassembly of a list of scanned wire strings.

    Malformed strings are skipped. Returns None if the last batch seen is
    incomplete.
    """
    buffer = ReassemblyBuffer()
    for text in fragment_strings:
        try:
            buffer.ingest(text)
        except (ParseError, BatchConflict) as e:
            logger.debug("Skipping fragment: %s", e)
    return buffer.try_reassemble()
