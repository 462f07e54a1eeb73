"""Utility modules for the telemetry service."""

from app.utils.request_meta import classify_device, get_client_ip, is_public_ip

__all__ = [
    "classify_device",
    "get_client_ip",
    "is_public_ip",
]
