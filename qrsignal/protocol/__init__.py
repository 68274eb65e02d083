"""
QR Signal - Protocol Module

Wire-level pieces of the offline handshake:
- Fragment chunking and reassembly
- Payload kind tags, description and candidate formats
- QR rendering and scanned-symbol validation
"""

from .chunking import Fragment, IngestResult, IngestStatus, ReassemblyBuffer, parse_fragment, split
from .payload import PayloadKind, SessionPayload, decode_payload, encode_payload
from .transport import CodeTransport, RenderableCode

__all__ = [
    'Fragment',
    'IngestResult',
    'IngestStatus',
    'ReassemblyBuffer',
    'parse_fragment',
    'split',
    'PayloadKind',
    'SessionPayload',
    'decode_payload',
    'encode_payload',
    'CodeTransport',
    'RenderableCode'
]
