"""
QR Signal - Codec Module

Reversible payload compression:
- PayloadCodec (zlib gzip container, Base64 envelope)
- Pure-Python DEFLATE decoder used as fallback
"""

from .compressor import PayloadCodec, compress, decompress
from .inflate import inflate, inflate_gzip, inflate_raw, inflate_zlib

__all__ = [
    'PayloadCodec',
    'compress',
    'decompress',
    'inflate',
    'inflate_gzip',
    'inflate_raw',
    'inflate_zlib'
]
