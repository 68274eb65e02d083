"""
QR Signal Relay Peer
Bridges a handshake session to a media engine that lives elsewhere
(typically a browser RTCPeerConnection) through a polled outbox.

Session -> engine: messages queued in the outbox, drained by
    GET /api/sessions/{id}/engine/outbox
Engine -> session: submit_* methods, called by the engine routes
"""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional

from qrsignal.handshake.peer import PeerEvents

logger = logging.getLogger(__name__)


class OutboxMessage:
    """Outbox message types."""
    CREATE_DESCRIPTION = "create_description"
    REMOTE_DESCRIPTION = "remote_description"
    REMOTE_CANDIDATE = "remote_candidate"
    CLOSE = "close"


class RelayPeer:
    """
    PeerTransport whose engine answers asynchronously.

    create_local_description() always defers: it asks the engine for a
    description and returns None; the engine later calls submit_description().
    """

    def __init__(self, max_outbox: int = 1000):
        self._events: Optional[PeerEvents] = None
        self._lock = threading.Lock()
        self._outbox: List[Dict] = []
        self._max_outbox = max_outbox
        self._seq = 0
        self.description_requested = False
        self.closed = False

    def _push(self, type_: str, data: Optional[str] = None):
        with self._lock:
            if len(self._outbox) >= self._max_outbox:
                dropped = self._outbox.pop(0)
                logger.warning("Outbox full, dropping %s message", dropped["type"])
            self._seq += 1
            self._outbox.append({
                "seq": self._seq,
                "type": type_,
                "data": data,
                "ts": datetime.now().isoformat(),
            })

    def drain_outbox(self) -> List[Dict]:
        """Return and clear pending messages for the engine."""
        with self._lock:
            messages = self._outbox
            self._outbox = []
        return messages

    @property
    def pending_messages(self) -> int:
        with self._lock:
            return len(self._outbox)

    # ========================================================================
    # PeerTransport
    # ========================================================================

    def attach(self, events: PeerEvents):
        self._events = events

    def create_local_description(self) -> Optional[str]:
        self.closed = False
        self.description_requested = True
        self._push(OutboxMessage.CREATE_DESCRIPTION)
        return None

    def apply_remote_description(self, description: str):
        self.closed = False
        self._push(OutboxMessage.REMOTE_DESCRIPTION, description)

    def apply_remote_candidate(self, candidate: str):
        self._push(OutboxMessage.REMOTE_CANDIDATE, candidate)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.description_requested = False
        self._push(OutboxMessage.CLOSE)

    # ========================================================================
    # Engine -> session
    # ========================================================================

    def _require_events(self) -> PeerEvents:
        if self._events is None:
            raise RuntimeError("RelayPeer is not attached to a session")
        return self._events

    def submit_description(self, description: str) -> bool:
        """
        Deliver the engine's local description.

        Returns:
            bool: False if no description was requested (it is ignored)
        """
        events = self._require_events()
        if not self.description_requested:
            logger.warning("Engine submitted a description nobody asked for")
            return False
        self.description_requested = False
        events.on_local_description(description)
        return True

    def submit_candidate(self, candidate: str):
        self._require_events().on_candidate_gathered(candidate)

    def submit_gathering_complete(self):
        self._require_events().on_gathering_complete()

    def submit_state(self, state: str):
        self._require_events().on_connection_state_changed(state)

    def submit_failure(self, reason: str):
        self._require_events().on_negotiation_failed(reason)
