"""
Observability utilities for virt-api.

This module provides structured logging with correlation IDs for
production troubleshooting.
"""

from .logging import BootstrapLogger, setup_structured_logging

__all__ = [
    "BootstrapLogger",
    "setup_structured_logging",
]
