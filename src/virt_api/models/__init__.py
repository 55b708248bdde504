"""
Models package - Pydantic models for type-safe bootstrap state.

Defines data models for:
- The TLS identity of virt-api
- Request-header trust configuration
- Webhook and aggregated API declarations
"""

from .identity import Identity
from .registration import ServiceCoordinates, WebhookKind, WebhookRule
from .trust import TrustConfig, TrustSnapshot

__all__ = [
    "Identity",
    "ServiceCoordinates",
    "TrustConfig",
    "TrustSnapshot",
    "WebhookKind",
    "WebhookRule",
]
