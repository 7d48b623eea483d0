"""
Adapters to external systems used by the datasets service.
"""

from .origin_client import OriginClient, OriginResponse, OriginTransportError

__all__ = ["OriginClient", "OriginResponse", "OriginTransportError"]
