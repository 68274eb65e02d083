"""
QR Signal host routes
"""
