"""
QR Signal - Offline WebRTC signaling over scanned QR codes

Two devices exchange session descriptions and candidates as sequences of QR
codes instead of through a signaling server:
- codec: gzip + Base64 compression with a pure-Python inflate fallback
- protocol: fragment chunking, payload tags, QR rendering
- handshake: the initiator/responder state machine
"""

from .codec import PayloadCodec, compress, decompress
from .errors import (
    BatchConflict,
    DecodeFailure,
    NegotiationFailure,
    ParseError,
    PayloadError,
    QRSignalError,
)
from .handshake import HandshakeSession, Phase, Role, ScanResult, ScanStatus
from .protocol import CodeTransport, Fragment, ReassemblyBuffer, split

__all__ = [
    'PayloadCodec',
    'compress',
    'decompress',
    'BatchConflict',
    'DecodeFailure',
    'NegotiationFailure',
    'ParseError',
    'PayloadError',
    'QRSignalError',
    'HandshakeSession',
    'Phase',
    'Role',
    'ScanResult',
    'ScanStatus',
    'CodeTransport',
    'Fragment',
    'ReassemblyBuffer',
    'split'
]

__version__ = '1.0.0'
