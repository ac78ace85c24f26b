"""Transports used by the finder (UDP multicast)."""
