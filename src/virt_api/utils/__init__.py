"""
Utils package - helper modules for virt-api.

Contains helper modules for:
- Kubernetes client management and create/read outcome handling
- Watch-based caches of cluster state
"""

from virt_api.utils.kubernetes import (
    Conflict,
    Created,
    CreateResult,
    Failed,
    attempt_create,
    read_optional,
)

__all__ = [
    "Conflict",
    "Created",
    "CreateResult",
    "Failed",
    "attempt_create",
    "read_optional",
]
