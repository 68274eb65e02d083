"""
QR Signal - Handshake Module

The two-role offline handshake state machine and the peer interfaces it
drives.
"""

from .peer import PeerEvents, PeerTransport
from .session import HandshakeSession, LocalExport, Phase, Role, ScanResult, ScanStatus

__all__ = [
    'PeerEvents',
    'PeerTransport',
    'HandshakeSession',
    'LocalExport',
    'Phase',
    'Role',
    'ScanResult',
    'ScanStatus'
]
