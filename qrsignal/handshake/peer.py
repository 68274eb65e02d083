"""
Peer collaborator interfaces.

PeerTransport is what the handshake session drives (a media engine wrapper).
PeerEvents is what the engine calls back into; HandshakeSession implements it.
"""

from typing import Optional, Protocol


class PeerEvents(Protocol):
    def on_candidate_gathered(self, candidate: str) -> None: ...

    def on_gathering_complete(self) -> None: ...

    def on_connection_state_changed(self, state: str) -> None: ...

    def on_local_description(self, description: str) -> None: ...

    def on_negotiation_failed(self, reason: str) -> None: ...


class PeerTransport(Protocol):
    """
    Media engine seen from the handshake session.

    create_local_description returns the serialized description, or None when
    it will be delivered later through PeerEvents.on_local_description.
    apply_* methods raise NegotiationFailure when the engine rejects input.
    """

    def attach(self, events: PeerEvents) -> None: ...

    def create_local_description(self) -> Optional[str]: ...

    def apply_remote_description(self, description: str) -> None: ...

    def apply_remote_candidate(self, candidate: str) -> None: ...

    def close(self) -> None: ...
