"""
QR Signal host service: FastAPI app holding handshake sessions for browsers
and other media engines that cannot scan or render codes themselves.
"""
