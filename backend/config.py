"""
QR Signal Host Configuration
Read once from environment variables at import time
"""
import os

from qrsignal.protocol.chunking import MAX_FRAGMENT_PAYLOAD_LEN
from qrsignal.protocol.transport import DEFAULT_BORDER, DEFAULT_BOX_SIZE, DEFAULT_ERROR_CORRECTION

# ============================================================================
# Fragments and QR rendering
# ============================================================================
MAX_FRAGMENT_LEN = int(os.environ.get("QRSIGNAL_MAX_FRAGMENT_LEN", MAX_FRAGMENT_PAYLOAD_LEN))
QR_ERROR_CORRECTION = os.environ.get("QRSIGNAL_QR_ERROR_CORRECTION", DEFAULT_ERROR_CORRECTION).upper()
QR_BOX_SIZE = int(os.environ.get("QRSIGNAL_QR_BOX_SIZE", DEFAULT_BOX_SIZE))
QR_BORDER = int(os.environ.get("QRSIGNAL_QR_BORDER", DEFAULT_BORDER))

# ============================================================================
# Service
# ============================================================================
LOG_LEVEL = os.environ.get("QRSIGNAL_LOG_LEVEL", "INFO").upper()
MAX_SESSIONS = int(os.environ.get("QRSIGNAL_MAX_SESSIONS", 64))
HOST = os.environ.get("QRSIGNAL_HOST", "0.0.0.0")
PORT = int(os.environ.get("QRSIGNAL_PORT", 8090))
