"""
Error handling module for virt-api.

This module provides the error hierarchy used during bootstrap and request
authorization, categorized by the kind of failure.
"""

from .bootstrap_errors import (
    BootstrapError,
    ConfigurationError,
    ControlPlaneError,
    EncodingError,
    InternalError,
    StorageError,
)

__all__ = [
    "BootstrapError",
    "ConfigurationError",
    "StorageError",
    "ControlPlaneError",
    "EncodingError",
    "InternalError",
]
