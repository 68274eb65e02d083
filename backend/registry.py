"""
QR Signal Session Registry
In-memory store of hosted handshake sessions, one per connection attempt
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from qrsignal.handshake import HandshakeSession
from qrsignal.protocol.transport import CodeTransport

from backend import config
from backend.services.relay_peer import RelayPeer

logger = logging.getLogger(__name__)


class RegistryFull(Exception):
    """Raised when the registry already holds max_sessions sessions."""


@dataclass
class HostedSession:
    session_id: str
    session: HandshakeSession
    peer: RelayPeer
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        data = {"session_id": self.session_id, "created_at": self.created_at}
        data.update(self.session.status())
        data["outbox_pending"] = self.peer.pending_messages
        return data


class SessionRegistry:
    """Thread-safe map of session_id -> HostedSession."""

    def __init__(self, max_sessions: int = config.MAX_SESSIONS,
                 max_fragment_len: int = config.MAX_FRAGMENT_LEN,
                 transport: Optional[CodeTransport] = None):
        self.max_sessions = max_sessions
        self.max_fragment_len = max_fragment_len
        self.transport = transport or CodeTransport(
            error_correction=config.QR_ERROR_CORRECTION,
            box_size=config.QR_BOX_SIZE,
            border=config.QR_BORDER,
        )
        if not self.transport.fits_payload_len(max_fragment_len):
            raise ValueError(
                f"Fragment length {max_fragment_len} does not fit one QR code "
                f"at level {self.transport.error_correction}"
            )
        self._lock = threading.Lock()
        self._sessions: Dict[str, HostedSession] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self) -> HostedSession:
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise RegistryFull(f"Session limit of {self.max_sessions} reached")
            peer = RelayPeer()
            session = HandshakeSession(
                peer,
                max_fragment_len=self.max_fragment_len,
                transport=self.transport,
            )
            hosted = HostedSession(session_id=uuid.uuid4().hex, session=session, peer=peer)
            self._sessions[hosted.session_id] = hosted
        logger.info("Created session %s (%d active)", hosted.session_id, len(self))
        return hosted

    def get(self, session_id: str) -> Optional[HostedSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self) -> List[HostedSession]:
        with self._lock:
            return list(self._sessions.values())

    def remove(self, session_id: str) -> bool:
        """Clean up and forget a session. Returns False if unknown."""
        with self._lock:
            hosted = self._sessions.pop(session_id, None)
        if hosted is None:
            return False
        hosted.session.cleanup()
        logger.info("Removed session %s", session_id)
        return True

    def clear(self):
        with self._lock:
            hosted_sessions = list(self._sessions.values())
            self._sessions.clear()
        for hosted in hosted_sessions:
            hosted.session.cleanup()


# Registry used by the app; tests may swap it out via get_registry overrides
registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return registry
