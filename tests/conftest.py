from typing import List, Optional

import pytest

from qrsignal.errors import NegotiationFailure
from qrsignal.handshake import HandshakeSession, Role
from qrsignal.protocol.payload import PayloadKind, serialize_candidate, serialize_description

OFFER_SDP = (
    "v=0\r\n"
    "o=- 4611731400430051336 2 IN IP4 127.0.0.1\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "a=group:BUNDLE 0\r\n"
    "m=video 9 UDP/TLS/RTP/SAVPF 96\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=setup:actpass\r\n"
    "a=mid:0\r\n"
    "a=rtpmap:96 VP8/90000\r\n"
)

ANSWER_SDP = OFFER_SDP.replace("a=setup:actpass", "a=setup:active")


def make_candidate(i: int) -> str:
    return serialize_candidate(
        f"candidate:{i} 1 udp {2122260223 - i} 192.168.1.{10 + i} {50000 + i} typ host",
        sdp_mid="0",
        sdp_mline_index=0,
    )


class FakePeer:
    """Scripted PeerTransport recording every call."""

    def __init__(self, local_type: str = "offer", deferred: bool = False,
                 fail_on_create: bool = False, fail_on_remote: bool = False,
                 fail_on_candidate: bool = False):
        self.local_type = local_type
        self.deferred = deferred
        self.fail_on_create = fail_on_create
        self.fail_on_remote = fail_on_remote
        self.fail_on_candidate = fail_on_candidate
        self.events = None
        self.create_calls = 0
        self.close_calls = 0
        self.remote_descriptions: List[str] = []
        self.remote_candidates: List[str] = []

    @property
    def local_description(self) -> str:
        sdp = OFFER_SDP if self.local_type == "offer" else ANSWER_SDP
        return serialize_description(self.local_type, sdp)

    def attach(self, events):
        self.events = events

    def create_local_description(self) -> Optional[str]:
        self.create_calls += 1
        if self.fail_on_create:
            raise NegotiationFailure("engine refused to create a description")
        if self.deferred:
            return None
        return self.local_description

    def apply_remote_description(self, description: str):
        if self.fail_on_remote:
            raise NegotiationFailure("engine rejected remote description")
        self.remote_descriptions.append(description)

    def apply_remote_candidate(self, candidate: str):
        if self.fail_on_candidate:
            raise NegotiationFailure("engine rejected candidate")
        self.remote_candidates.append(candidate)

    def close(self):
        self.close_calls += 1


def wire_strings(session: HandshakeSession, kind: Optional[PayloadKind] = None) -> List[str]:
    """Wire strings a session currently displays, optionally for one payload kind."""
    if kind is None:
        return [code.text for code in session.get_pending_local_fragments()]
    export = session.get_local_export(kind)
    return export.wire_strings if export else []


@pytest.fixture
def initiator_peer():
    return FakePeer(local_type="offer")


@pytest.fixture
def responder_peer():
    return FakePeer(local_type="answer")


@pytest.fixture
def initiator(initiator_peer):
    session = HandshakeSession(initiator_peer, max_fragment_len=60)
    session.select_role(Role.INITIATOR)
    return session


@pytest.fixture
def responder(responder_peer):
    session = HandshakeSession(responder_peer, max_fragment_len=60)
    session.select_role(Role.RESPONDER)
    return session
