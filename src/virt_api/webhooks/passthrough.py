"""
Default admission handlers that admit every request.

Deployments plug their validation and mutation logic in through the
ADMISSION_HANDLERS setting, which names a factory with the same signature
as ``build_handlers``. These handlers let virt-api come up without one.
"""

import logging
from collections.abc import Mapping
from typing import Any

from ..constants import (
    MIGRATION_CREATE_VALIDATE_PATH,
    MIGRATION_MUTATE_PATH,
    MIGRATION_UPDATE_VALIDATE_PATH,
    VM_MUTATE_PATH,
    VM_VALIDATE_PATH,
    VMI_CREATE_VALIDATE_PATH,
    VMI_MUTATE_PATH,
    VMI_UPDATE_VALIDATE_PATH,
    VMIPRESET_VALIDATE_PATH,
    VMIRS_VALIDATE_PATH,
)
from ..server.admission import AdmissionHandler
from ..utils.watch_cache import WatchCache

logger = logging.getLogger(__name__)

ADMISSION_PATHS = (
    VMI_CREATE_VALIDATE_PATH,
    VMI_UPDATE_VALIDATE_PATH,
    VM_VALIDATE_PATH,
    VMIRS_VALIDATE_PATH,
    VMIPRESET_VALIDATE_PATH,
    MIGRATION_CREATE_VALIDATE_PATH,
    MIGRATION_UPDATE_VALIDATE_PATH,
    VM_MUTATE_PATH,
    VMI_MUTATE_PATH,
    MIGRATION_MUTATE_PATH,
)


def _admit(path: str) -> AdmissionHandler:
    async def admit(operation: str, namespace: str | None, name: str | None, **_: Any):
        logger.debug(f"{path}: admitting {operation} of {namespace}/{name}")

    return admit


def build_handlers(caches: Mapping[str, WatchCache]) -> dict[str, AdmissionHandler]:
    """
    Build one admitting handler per callback path.

    Args:
        caches: Synced watch caches keyed by name; unused here

    Returns:
        Handlers keyed by callback path
    """
    return {path: _admit(path) for path in ADMISSION_PATHS}
