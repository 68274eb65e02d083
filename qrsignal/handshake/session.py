"""
Handshake Session Module for QR Signal

Drives the two-role offline handshake:

    initiator                              responder
    ---------                              ---------
    select_role(INITIATOR)                 select_role(RESPONDER)
    offer shown as QR codes     ------->   feed_scanned_symbol(...) x N
                                           offer applied, answer created
    feed_scanned_symbol(...) x N <-------  answer shown as QR codes
    candidates exchanged the same way, in either direction
    peer reports "connected" -> ESTABLISHED

Phases:
    IDLE -> ROLE_SELECTED -> LOCAL_PAYLOAD_READY -> AWAITING_REMOTE_PAYLOAD
    -> REMOTE_APPLIED -> [responder: LOCAL_ANSWER_READY] -> ESTABLISHED -> CLOSED

Every public method and peer callback runs under one re-entrant lock, so a
peer may call back synchronously from inside create_local_description or
apply_remote_description.

Usage:
    session = HandshakeSession(peer)
    session.select_role(Role.INITIATOR)
    for code in session.get_pending_local_fragments():
        show(code.to_png())

    session.start_scan()
    result = session.feed_scanned_symbol(decoded_text)
    print(result.message)
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from qrsignal.codec import PayloadCodec
from qrsignal.errors import BatchConflict, NegotiationFailure, ParseError, PayloadError
from qrsignal.handshake.peer import PeerTransport
from qrsignal.protocol.chunking import MAX_FRAGMENT_PAYLOAD_LEN, ReassemblyBuffer, parse_fragment, split
from qrsignal.protocol.payload import (
    PayloadKind,
    SessionPayload,
    decode_payload,
    encode_payload,
    join_candidate_lines,
    parse_candidate,
    parse_description,
    serialize_candidate,
    serialize_description,
    split_candidate_lines,
)
from qrsignal.protocol.transport import CodeTransport, RenderableCode

logger = logging.getLogger(__name__)


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"

    @property
    def opposite(self) -> "Role":
        return Role.RESPONDER if self is Role.INITIATOR else Role.INITIATOR

    @property
    def expected_remote_type(self) -> str:
        return "answer" if self is Role.INITIATOR else "offer"


class Phase(str, Enum):
    IDLE = "idle"
    ROLE_SELECTED = "role_selected"
    LOCAL_PAYLOAD_READY = "local_payload_ready"
    AWAITING_REMOTE_PAYLOAD = "awaiting_remote_payload"
    REMOTE_APPLIED = "remote_applied"
    LOCAL_ANSWER_READY = "local_answer_ready"
    ESTABLISHED = "established"
    CLOSED = "closed"


class ScanStatus(str, Enum):
    IGNORED = "ignored"      # foreign symbol, no role, or batch already applied
    REJECTED = "rejected"    # malformed fragment or payload, scanning continues
    PROGRESS = "progress"    # fragment stored, batch incomplete
    APPLIED = "applied"      # batch complete and handed to the peer
    FAILED = "failed"        # peer rejected the payload, session closed


@dataclass
class ScanResult:
    """Outcome of one scanned symbol."""
    status: ScanStatus
    message: str
    kind: Optional[PayloadKind] = None
    received: int = 0
    total: int = 0
    error: Optional[str] = None
    queued: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "kind": self.kind.value if self.kind else None,
            "received": self.received,
            "total": self.total,
            "error": self.error,
            "queued": self.queued,
        }


@dataclass
class LocalExport:
    """Rendered fragments of one local payload awaiting display."""
    kind: PayloadKind
    batch_id: str
    codes: List[RenderableCode] = field(default_factory=list)

    @property
    def wire_strings(self) -> List[str]:
        return [code.text for code in self.codes]


Listener = Callable[[str, Dict[str, Any]], None]


class HandshakeSession:
    """
    One connection attempt between this device and a remote one.

    Implements PeerEvents; the peer is attached on construction.
    """

    def __init__(self, peer: PeerTransport,
                 max_fragment_len: int = MAX_FRAGMENT_PAYLOAD_LEN,
                 transport: Optional[CodeTransport] = None,
                 codec: Optional[PayloadCodec] = None):
        """
        Initialize session.

        Args:
            peer: Media engine wrapper
            max_fragment_len: Max compressed characters per QR code
            transport: QR renderer/validator (defaults to CodeTransport())
            codec: Payload compressor (defaults to PayloadCodec())
        """
        if max_fragment_len < 1:
            raise ValueError("max_fragment_len must be at least 1")

        self._peer = peer
        self.max_fragment_len = max_fragment_len
        self.transport = transport or CodeTransport()
        if not self.transport.fits_payload_len(max_fragment_len):
            raise ValueError(
                f"max_fragment_len {max_fragment_len} does not fit one QR code "
                f"at level {self.transport.error_correction}"
            )
        self.codec = codec or PayloadCodec()

        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._role: Optional[Role] = None
        self._phase = Phase.IDLE
        self._connection_state: Optional[str] = None
        self._last_error: Optional[str] = None
        self._reset_progress()

        peer.attach(self)

    def _reset_progress(self):
        self._buffer = ReassemblyBuffer()
        self._exports: Dict[PayloadKind, LocalExport] = {}
        self._local_candidates: List[str] = []
        self._pending_remote_candidates: List[str] = []
        self._consumed_batches: Set[str] = set()
        self._remote_description_applied = False
        self._awaiting_local_description = False

    # ========================================================================
    # State
    # ========================================================================

    @property
    def role(self) -> Optional[Role]:
        return self._role

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def add_listener(self, listener: Listener):
        """
        Register a callback invoked as listener(event, data).

        Events: "phase", "export", "connection_state", "failure".
        Listeners run under the session lock.
        """
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, event: str, **data):
        for listener in list(self._listeners):
            listener(event, data)

    def _log(self, level: int, msg: str, *args):
        tag = self._role.value if self._role else "-"
        logger.log(level, "[%s] " + msg, tag, *args)

    def _set_phase(self, phase: Phase):
        if phase is self._phase:
            return
        previous = self._phase
        self._phase = phase
        self._log(logging.INFO, "Phase %s -> %s", previous.value, phase.value)
        self._notify("phase", previous=previous.value, phase=phase.value)

    def status(self) -> Dict[str, Any]:
        """Snapshot of the session for display or the HTTP host."""
        with self._lock:
            received, total = self._buffer.progress
            return {
                "role": self._role.value if self._role else None,
                "phase": self._phase.value,
                "connection_state": self._connection_state,
                "scan": {
                    "received": received,
                    "total": total,
                    "missing": self._buffer.missing_indices,
                    "message": self._buffer.progress_message,
                },
                "exports": {
                    kind.value: len(export.codes) for kind, export in self._exports.items()
                },
                "remote_description_applied": self._remote_description_applied,
                "pending_remote_candidates": len(self._pending_remote_candidates),
                "awaiting_local_description": self._awaiting_local_description,
                "last_error": self._last_error,
            }

    # ========================================================================
    # Role and teardown
    # ========================================================================

    def select_role(self, role: Role) -> bool:
        """
        Pick initiator or responder.

        Returns:
            bool: False (and no state change) if a role is already held
        """
        role = Role(role)
        with self._lock:
            if self._role is not None:
                self._log(logging.WARNING, "Already %s, cleanup() before selecting %s", self._role.value, role.value)
                return False

            self._reset_progress()
            self._last_error = None
            self._connection_state = None
            self._role = role
            self._set_phase(Phase.ROLE_SELECTED)

            if role is Role.INITIATOR:
                self._request_local_description()
            else:
                self._set_phase(Phase.AWAITING_REMOTE_PAYLOAD)
            return True

    def cleanup(self) -> bool:
        """
        Close the peer and discard all progress.

        Returns:
            bool: False if there was nothing to clean up
        """
        with self._lock:
            if self._role is None and self._phase in (Phase.IDLE, Phase.CLOSED):
                return False
            self._log(logging.INFO, "Cleaning up session")
            try:
                self._peer.close()
            finally:
                self._close()
            return True

    def _close(self):
        self._reset_progress()
        self._set_phase(Phase.CLOSED)
        self._role = None

    def _fail(self, reason: str):
        self._log(logging.ERROR, "Negotiation failed: %s", reason)
        self._last_error = reason
        try:
            self._peer.close()
        finally:
            self._close()
            self._notify("failure", reason=reason)

    # ========================================================================
    # Local payloads
    # ========================================================================

    def _request_local_description(self):
        self._awaiting_local_description = True
        try:
            description = self._peer.create_local_description()
        except NegotiationFailure as e:
            self._fail(str(e))
            return
        # The peer may already have delivered it through on_local_description
        if description is not None and self._awaiting_local_description:
            self._export_local_description(description)
        elif description is None and self._awaiting_local_description:
            self._log(logging.INFO, "Waiting for the peer to deliver the local description")

    def _export_local_description(self, description: str):
        self._awaiting_local_description = False
        if not self._export(PayloadKind.DESCRIPTION, description):
            return
        if self._role is Role.INITIATOR and self._phase is Phase.ROLE_SELECTED:
            self._set_phase(Phase.LOCAL_PAYLOAD_READY)
        elif self._role is Role.RESPONDER and self._phase is Phase.REMOTE_APPLIED:
            self._set_phase(Phase.LOCAL_ANSWER_READY)

    def _export(self, kind: PayloadKind, text: str) -> bool:
        blob = self.codec.compress(encode_payload(kind, text))
        fragments = split(blob, self.max_fragment_len)
        try:
            codes = [self.transport.encode_fragment(f) for f in fragments]
        except ValueError as e:
            self._fail(f"Local {kind.value} payload cannot be shown as QR codes: {e}")
            return False
        export = LocalExport(kind=kind, batch_id=fragments[0].batch_id, codes=codes)
        self._exports[kind] = export
        self._log(
            logging.INFO, "Exported %s payload: %d chars -> %d QR code(s)",
            kind.value, len(text), len(codes),
        )
        self._notify("export", kind=kind.value, batch_id=export.batch_id, total=len(codes))
        return True

    def get_pending_local_fragments(self) -> List[RenderableCode]:
        """All codes to display, description batch first."""
        with self._lock:
            codes = []
            for kind in PayloadKind:
                export = self._exports.get(kind)
                if export is not None:
                    codes.extend(export.codes)
            return codes

    def get_local_export(self, kind: PayloadKind) -> Optional[LocalExport]:
        with self._lock:
            return self._exports.get(PayloadKind(kind))

    # ========================================================================
    # PeerEvents
    # ========================================================================

    def on_local_description(self, description: str):
        with self._lock:
            if not self._awaiting_local_description:
                self._log(logging.WARNING, "Ignoring unrequested local description")
                return
            self._export_local_description(description)

    def on_candidate_gathered(self, candidate: str):
        with self._lock:
            if self._role is None:
                logger.debug("Ignoring candidate gathered with no role selected")
                return
            self._local_candidates.append(candidate)

    def on_gathering_complete(self):
        with self._lock:
            if self._role is None:
                logger.debug("Ignoring gathering complete with no role selected")
                return
            if not self._local_candidates:
                self._log(logging.INFO, "Gathering complete with no local candidates")
                return
            text = join_candidate_lines(self._local_candidates)
            self._local_candidates = []
            self._export(PayloadKind.CANDIDATE, text)

    def on_connection_state_changed(self, state: str):
        state = str(state).lower()
        with self._lock:
            self._connection_state = state
            self._log(logging.INFO, "Connection state: %s", state)
            self._notify("connection_state", state=state)
            if self._role is None:
                return
            if state == "connected":
                self._set_phase(Phase.ESTABLISHED)
            elif state == "failed":
                self._fail("connection failed")

    def on_negotiation_failed(self, reason: str):
        with self._lock:
            if self._role is None:
                self._log(logging.WARNING, "Negotiation failure with no active role: %s", reason)
                return
            self._fail(reason)

    # ========================================================================
    # Remote payloads
    # ========================================================================

    def start_scan(self) -> bool:
        """Begin a fresh scan session, discarding any partial batch."""
        with self._lock:
            if self._role is None:
                self._log(logging.WARNING, "start_scan() with no role selected")
                return False
            self._buffer.reset()
            if self._phase is Phase.LOCAL_PAYLOAD_READY:
                self._set_phase(Phase.AWAITING_REMOTE_PAYLOAD)
            return True

    def feed_scanned_symbol(self, symbol: Any) -> ScanResult:
        """
        Feed one scanned symbol (decoded text, bytes, or an image).

        Never raises for bad input; see ScanResult.status.
        """
        with self._lock:
            if self._role is None:
                return ScanResult(ScanStatus.IGNORED, "No role selected")

            wire = self.transport.decode_symbol(symbol)
            if wire is None:
                return ScanResult(ScanStatus.IGNORED, "Not a QR Signal code")

            if self._phase is Phase.LOCAL_PAYLOAD_READY:
                self.start_scan()

            try:
                fragment = parse_fragment(wire)
                if fragment.batch_id in self._consumed_batches:
                    return ScanResult(
                        ScanStatus.IGNORED, "Code belongs to a payload that was already applied",
                        received=fragment.total, total=fragment.total,
                    )
                ingested = self._buffer.add(fragment)
            except (ParseError, BatchConflict) as e:
                self._log(logging.WARNING, "Rejected scan: %s", e)
                return ScanResult(ScanStatus.REJECTED, "Code rejected", error=str(e))

            logger.debug("Fragment %s of batch %s: %s", fragment.label, fragment.batch_id, ingested.status.value)
            blob = self._buffer.try_reassemble()
            if blob is None:
                return ScanResult(
                    ScanStatus.PROGRESS, ingested.progress_message,
                    received=ingested.received, total=ingested.total,
                )

            self._consumed_batches.add(fragment.batch_id)
            self._buffer.reset()
            return self._apply_blob(blob, ingested.received)

    def _apply_blob(self, blob: str, total: int) -> ScanResult:
        origin = self._role.opposite.value
        try:
            payload = decode_payload(self.codec.decompress(blob), origin=origin)
            queued = self._apply_remote(payload)
        except PayloadError as e:
            self._log(logging.WARNING, "Rejected remote payload: %s", e)
            return ScanResult(
                ScanStatus.REJECTED, "Payload rejected", received=total, total=total, error=str(e),
            )
        except NegotiationFailure as e:
            self._fail(str(e))
            return ScanResult(
                ScanStatus.FAILED, "Negotiation failed", kind=payload.kind,
                received=total, total=total, error=str(e),
            )

        if self._role is None:
            # answer creation failed after the offer was applied
            return ScanResult(
                ScanStatus.FAILED, "Negotiation failed", kind=payload.kind,
                received=total, total=total, error=self._last_error,
            )
        if queued:
            return ScanResult(
                ScanStatus.APPLIED,
                f"Remote {payload.kind.value} payload queued until the remote description arrives",
                kind=payload.kind, received=total, total=total, queued=queued,
            )
        return ScanResult(
            ScanStatus.APPLIED, f"Remote {payload.kind.value} payload applied",
            kind=payload.kind, received=total, total=total,
        )

    def _apply_remote(self, payload: SessionPayload) -> int:
        """Returns how many candidates were queued rather than applied."""
        if payload.kind is PayloadKind.DESCRIPTION:
            self._apply_remote_description(payload.text)
            return 0
        return self._apply_remote_candidates(split_candidate_lines(payload.text))

    def _apply_remote_description(self, text: str):
        type_, sdp = parse_description(text)
        expected = self._role.expected_remote_type
        if type_ != expected:
            raise PayloadError(f"Expected a remote {expected}, got {type_}")
        if self._remote_description_applied:
            raise PayloadError("Remote description already applied")

        self._peer.apply_remote_description(serialize_description(type_, sdp))
        self._remote_description_applied = True
        self._log(logging.INFO, "Applied remote %s", type_)
        self._set_phase(Phase.REMOTE_APPLIED)

        if self._pending_remote_candidates:
            queued = self._pending_remote_candidates
            self._pending_remote_candidates = []
            self._apply_remote_candidates(queued)

        if self._role is Role.RESPONDER:
            self._request_local_description()

    def _apply_remote_candidates(self, lines: List[str]) -> int:
        if not self._remote_description_applied:
            self._pending_remote_candidates.extend(lines)
            self._log(logging.INFO, "Queued %d remote candidate(s) until the remote description arrives", len(lines))
            return len(lines)

        added = failed = 0
        for line in lines:
            try:
                candidate = parse_candidate(line)
            except PayloadError as e:
                failed += 1
                logger.debug("Skipping candidate line: %s", e)
                continue
            self._peer.apply_remote_candidate(serialize_candidate(
                candidate.candidate, candidate.sdp_mid,
                candidate.sdp_mline_index, candidate.username_fragment,
            ))
            added += 1
        self._log(logging.INFO, "Remote candidates added=%d failed=%d", added, failed)
        return 0
