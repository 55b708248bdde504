"""
Aggregated API registration.

One APIService per version of the subresource group routes that group's
traffic from the kube-apiserver to virt-api.
"""

import copy
from typing import Any

from kubernetes import client

from ..constants import (
    APP_LABEL,
    APP_LABEL_AGGREGATOR,
    GROUP_PRIORITY_MINIMUM,
    MANAGED_BY_LABEL,
    MANAGED_BY_OPERATOR,
    VERSION_PRIORITY,
)
from ..models import ServiceCoordinates
from .base_registrar import BaseRegistrar, with_operator_ownership


def desired_api_service(
    group: str, version: str, service: ServiceCoordinates
) -> dict[str, Any]:
    """APIService routing ``version.group`` to the virt-api Service."""
    return {
        "apiVersion": "apiregistration.k8s.io/v1",
        "kind": "APIService",
        "metadata": {
            "name": f"{version}.{group}",
            "labels": {
                APP_LABEL: APP_LABEL_AGGREGATOR,
                MANAGED_BY_LABEL: MANAGED_BY_OPERATOR,
            },
        },
        "spec": {
            "service": {"namespace": service.namespace, "name": service.name},
            "group": group,
            "version": version,
            "caBundle": service.ca_bundle_b64,
            "groupPriorityMinimum": GROUP_PRIORITY_MINIMUM,
            "versionPriority": VERSION_PRIORITY,
        },
    }


def merge_api_service(existing: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
    """
    Fold the desired routing spec into an existing APIService.

    The ownership label moves to operator-managed and ``spec`` is always
    replaced by the latest one; metadata and status are kept.
    """
    merged = with_operator_ownership(existing)
    merged["spec"] = copy.deepcopy(desired["spec"])
    return merged


class AggregatedServiceRegistrar(BaseRegistrar):
    """Declares the APIService of each supported subresource version."""

    def __init__(self, group: str, k8s_client: client.ApiClient | None = None):
        super().__init__(k8s_client)
        self.group = group
        self._api: client.ApiregistrationV1Api | None = None

    @property
    def api(self) -> client.ApiregistrationV1Api:
        if self._api is None:
            self._api = client.ApiregistrationV1Api(self.kubernetes_client)
        return self._api

    async def reconcile(
        self, namespace: str, service_name: str, version: str, ca_bundle: bytes
    ) -> str:
        """
        Declare the APIService for one version.

        Returns:
            "created" or "updated"

        Raises:
            ControlPlaneError: If the APIService cannot be read or written
        """
        service = ServiceCoordinates(
            namespace=namespace, name=service_name, ca_bundle=ca_bundle
        )
        return self.reconcile_declaration(
            resource_type="APIService",
            desired=desired_api_service(self.group, version, service),
            namespace=namespace,
            read=self.api.read_api_service,
            create=self.api.create_api_service,
            replace=self.api.replace_api_service,
            merge=merge_api_service,
        )
