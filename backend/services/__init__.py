"""
QR Signal host services
"""
