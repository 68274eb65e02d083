"""
Session Payload Module for QR Signal

Builds and parses the two payload kinds exchanged during a handshake:
- DESCRIPTION: one session description, JSON {"type", "sdp"}
- CANDIDATE: connectivity candidates, one JSON object per line

Before compression every payload is tagged with its kind ("sdp|..." or
"ice|...") so the receiver never has to guess. Untagged payloads from older
peers are sniffed with a warning.

Usage:
    envelope = encode_payload(PayloadKind.DESCRIPTION, serialize_description("offer", sdp))
    payload = decode_payload(envelope)
    kind, sdp = parse_description(payload.text)
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from qrsignal.errors import PayloadError

logger = logging.getLogger(__name__)


TAG_SEPARATOR = "|"
DESCRIPTION_TYPES = ("offer", "answer")


class PayloadKind(str, Enum):
    DESCRIPTION = "sdp"
    CANDIDATE = "ice"


@dataclass
class SessionPayload:
    """A local or remote handshake payload. Never persisted."""
    kind: PayloadKind
    text: str
    origin: Optional[str] = None  # role that produced it

    def to_envelope(self) -> str:
        return encode_payload(self.kind, self.text)


# ============================================================================
# Kind tag
# ============================================================================

def encode_payload(kind: PayloadKind, text: str) -> str:
    """Prefix text with its kind tag."""
    return f"{PayloadKind(kind).value}{TAG_SEPARATOR}{text}"


def _sniff_kind(text: str) -> Optional[PayloadKind]:
    stripped = text.lstrip()
    if stripped.startswith("v=0"):
        return PayloadKind.DESCRIPTION
    if stripped.startswith("{"):
        first_line = stripped.split("\n", 1)[0]
        try:
            obj = json.loads(first_line)
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            if "sdp" in obj:
                return PayloadKind.DESCRIPTION
            if "candidate" in obj:
                return PayloadKind.CANDIDATE
    if stripped.startswith("candidate:"):
        return PayloadKind.CANDIDATE
    return None


def decode_payload(envelope: str, origin: Optional[str] = None) -> SessionPayload:
    """
    Split a reassembled, decompressed envelope into kind and text.

    Raises:
        PayloadError: Neither a known tag nor a recognizable payload
    """
    tag, sep, rest = envelope.partition(TAG_SEPARATOR)
    if sep:
        for kind in PayloadKind:
            if tag == kind.value:
                return SessionPayload(kind=kind, text=rest, origin=origin)

    kind = _sniff_kind(envelope)
    if kind is None:
        raise PayloadError(f"Unrecognized payload ({len(envelope)} chars)")
    logger.warning("Untagged payload, guessed kind %s from content", kind.value)
    return SessionPayload(kind=kind, text=envelope, origin=origin)


# ============================================================================
# Descriptions
# ============================================================================

def serialize_description(type_: str, sdp: str) -> str:
    """Serialize a session description to JSON."""
    if type_ not in DESCRIPTION_TYPES:
        raise ValueError(f"Unknown description type: {type_}")
    return json.dumps({"type": type_, "sdp": sdp})


def parse_description(text: str) -> Tuple[str, str]:
    """
    Parse a session description.

    Accepts JSON {"type", "sdp"} or raw SDP (must contain v=0 and a BUNDLE
    group; a=setup:actpass marks an offer).

    Returns:
        Tuple of (type, sdp)

    Raises:
        PayloadError: Not a usable description
    """
    stripped = text.strip()
    if not stripped:
        raise PayloadError("Empty session description")

    if stripped.startswith("{"):
        try:
            obj = json.loads(stripped)
        except ValueError as e:
            raise PayloadError(f"Session description is not valid JSON: {e}") from e
        if not isinstance(obj, dict):
            raise PayloadError("Session description JSON must be an object")
        type_ = obj.get("type")
        sdp = obj.get("sdp")
        if type_ not in DESCRIPTION_TYPES:
            raise PayloadError(f"Unknown description type: {type_!r}")
        if not isinstance(sdp, str) or "v=0" not in sdp:
            raise PayloadError("Session description has no SDP body")
        return type_, sdp

    if "v=0" in stripped and "a=group:BUNDLE" in stripped:
        type_ = "offer" if "a=setup:actpass" in stripped else "answer"
        logger.debug("Raw SDP description, inferred type %s", type_)
        return type_, text

    raise PayloadError("Not a session description")


# ============================================================================
# Candidates
# ============================================================================

@dataclass
class Candidate:
    """One connectivity candidate."""
    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None
    username_fragment: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }
        if self.username_fragment:
            data["usernameFragment"] = self.username_fragment
        return data


def serialize_candidate(candidate: str, sdp_mid: Optional[str] = None,
                        sdp_mline_index: Optional[int] = None,
                        username_fragment: Optional[str] = None) -> str:
    """Serialize one candidate to its JSON line."""
    return json.dumps(Candidate(candidate, sdp_mid, sdp_mline_index, username_fragment).to_dict())


def parse_candidate(line: str) -> Candidate:
    """
    Parse one candidate line.

    Accepts the JSON form or the compact "candidate|sdpMid|sdpMLineIndex" form.

    Raises:
        PayloadError: Unparsable line
    """
    stripped = line.strip()
    if stripped.startswith("{"):
        try:
            obj = json.loads(stripped)
        except ValueError as e:
            raise PayloadError(f"Candidate is not valid JSON: {e}") from e
        if not isinstance(obj, dict) or not isinstance(obj.get("candidate"), str):
            raise PayloadError("Candidate JSON has no candidate field")
        index = obj.get("sdpMLineIndex")
        if index is not None and not isinstance(index, int):
            raise PayloadError(f"Bad sdpMLineIndex: {index!r}")
        return Candidate(
            candidate=obj["candidate"],
            sdp_mid=obj.get("sdpMid"),
            sdp_mline_index=index,
            username_fragment=obj.get("usernameFragment"),
        )

    parts = stripped.split("|")
    if len(parts) == 3 and parts[0]:
        try:
            index = int(parts[2])
        except ValueError as e:
            raise PayloadError(f"Bad sdpMLineIndex: {parts[2]!r}") from e
        return Candidate(candidate=parts[0], sdp_mid=parts[1] or None, sdp_mline_index=index)

    raise PayloadError("Not a candidate line")


def split_candidate_lines(text: str) -> List[str]:
    """Split a candidate payload into non-blank lines."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def join_candidate_lines(lines: List[str]) -> str:
    return "\n".join(lines)
