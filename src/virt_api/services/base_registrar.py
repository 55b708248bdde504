"""
Base registrar providing the get-or-create-or-update shape.

Every control-plane declaration virt-api owns is reconciled the same way:
read it, create it when absent, otherwise merge the desired state into the
existing record and update it. A create that loses a race against another
replica is answered with a single fetch followed by the merge path.
"""

import copy
import time
from collections.abc import Callable
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import MANAGED_BY_LABEL, MANAGED_BY_OPERATOR
from ..errors import BootstrapError, ControlPlaneError
from ..observability.logging import BootstrapLogger
from ..utils.kubernetes import (
    TRANSPORT_ERRORS,
    Created,
    Failed,
    attempt_create,
    error_reason,
    read_optional,
    to_dict,
)

Merge = Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]]


def with_operator_ownership(existing: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of ``existing`` labelled as operator-managed.

    Whatever managed-by value was present before is overwritten; the
    transition only ever goes towards the operator.
    """
    merged = copy.deepcopy(existing)
    metadata = merged.setdefault("metadata", {})
    labels = dict(metadata.get("labels") or {})
    labels[MANAGED_BY_LABEL] = MANAGED_BY_OPERATOR
    metadata["labels"] = labels
    return merged


class BaseRegistrar:
    """
    Base class for control-plane registrars.

    Provides Kubernetes client management and the shared reconcile flow.
    """

    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client
        self.logger = BootstrapLogger(self.__class__.__name__)

    @property
    def kubernetes_client(self) -> client.ApiClient:
        """Get or create Kubernetes API client."""
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    def reconcile_declaration(
        self,
        resource_type: str,
        desired: dict[str, Any],
        namespace: str,
        read: Callable[..., Any],
        create: Callable[..., Any],
        replace: Callable[..., Any],
        merge: Merge,
    ) -> str:
        """
        Make the declaration named in ``desired`` match it.

        Args:
            resource_type: Kind of declaration, for logs and errors
            desired: Freshly computed declaration
            namespace: Namespace of the declared service, for logs
            read: Read function taking ``name``
            create: Create function taking ``body``
            replace: Replace function taking ``name`` and ``body``
            merge: Pure function folding ``desired`` into the existing record

        Returns:
            "created" or "updated"

        Raises:
            ControlPlaneError: If any read, create or update fails
        """
        name = desired["metadata"]["name"]
        start_time = time.time()
        self.logger.log_reconciliation_start(
            resource_type=resource_type, resource_name=name, namespace=namespace
        )

        try:
            existing = self._read(resource_type, name, read, optional=True)
            if existing is None:
                result = attempt_create(create, body=desired)
                if isinstance(result, Created):
                    self.logger.log_reconciliation_success(
                        resource_type=resource_type,
                        resource_name=name,
                        namespace=namespace,
                        operation="created",
                        duration=time.time() - start_time,
                    )
                    return "created"
                if isinstance(result, Failed):
                    raise ControlPlaneError(
                        f"Failed to create {resource_type} {name}",
                        reason=error_reason(result.error),
                        cause=result.error,
                    )
                # Lost a creation race, fall through to the update path
                existing = self._read(resource_type, name, read, optional=False)

            merged = merge(to_dict(existing), desired)
            try:
                replace(name=name, body=merged)
            except (ApiException, *TRANSPORT_ERRORS) as e:
                raise ControlPlaneError(
                    f"Failed to update {resource_type} {name}",
                    reason=error_reason(e),
                    cause=e,
                ) from e
        except BootstrapError as e:
            self.logger.log_reconciliation_error(
                resource_type=resource_type,
                resource_name=name,
                namespace=namespace,
                error=e,
                duration=time.time() - start_time,
            )
            raise

        self.logger.log_reconciliation_success(
            resource_type=resource_type,
            resource_name=name,
            namespace=namespace,
            operation="updated",
            duration=time.time() - start_time,
        )
        return "updated"

    @staticmethod
    def _read(
        resource_type: str, name: str, read: Callable[..., Any], optional: bool
    ) -> Any:
        try:
            if optional:
                return read_optional(read, name=name)
            return read(name=name)
        except (ApiException, *TRANSPORT_ERRORS) as e:
            raise ControlPlaneError(
                f"Failed to get {resource_type} {name}", reason=error_reason(e), cause=e
            ) from e
