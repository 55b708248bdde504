"""
Admission webhook registration.

virt-api declares one ValidatingWebhookConfiguration and one
MutatingWebhookConfiguration. Each declared callback path is then bound on
the router to the external handler that services it.

The operation sets are exact per rule: VMIs and migrations are validated by
separate create and update callbacks, while VMs, replica sets and presets
share one callback for both operations.
"""

import copy
from collections.abc import Mapping
from typing import Any

from kubernetes import client

from ..constants import (
    APP_LABEL,
    MANAGED_BY_LABEL,
    MANAGED_BY_OPERATOR,
    MIGRATION_CREATE_VALIDATE_PATH,
    MIGRATION_MUTATE_PATH,
    MIGRATION_UPDATE_VALIDATE_PATH,
    OPERATION_CREATE,
    OPERATION_UPDATE,
    VM_MUTATE_PATH,
    VM_VALIDATE_PATH,
    VMI_CREATE_VALIDATE_PATH,
    VMI_MUTATE_PATH,
    VMI_UPDATE_VALIDATE_PATH,
    VMIPRESET_VALIDATE_PATH,
    VMIRS_VALIDATE_PATH,
)
from ..errors import ConfigurationError
from ..models import ServiceCoordinates, WebhookKind, WebhookRule
from ..server.admission import AdmissionHandler
from ..server.router import ApiRouter
from .base_registrar import BaseRegistrar, with_operator_ownership

CREATE = (OPERATION_CREATE,)
UPDATE = (OPERATION_UPDATE,)
CREATE_UPDATE = (OPERATION_CREATE, OPERATION_UPDATE)

# (webhook name, resource, operations, callback path), in evaluation order
_VALIDATING_TEMPLATES = (
    ("virtualmachineinstances-create-validator.kubevirt.io", "virtualmachineinstances", CREATE, VMI_CREATE_VALIDATE_PATH),
    ("virtualmachineinstances-update-validator.kubevirt.io", "virtualmachineinstances", UPDATE, VMI_UPDATE_VALIDATE_PATH),
    ("virtualmachine-validator.kubevirt.io", "virtualmachines", CREATE_UPDATE, VM_VALIDATE_PATH),
    ("virtualmachinereplicaset-validator.kubevirt.io", "virtualmachineinstancereplicasets", CREATE_UPDATE, VMIRS_VALIDATE_PATH),
    ("virtualmachinepreset-validator.kubevirt.io", "virtualmachineinstancepresets", CREATE_UPDATE, VMIPRESET_VALIDATE_PATH),
    ("migration-create-validator.kubevirt.io", "virtualmachineinstancemigrations", CREATE, MIGRATION_CREATE_VALIDATE_PATH),
    ("migration-update-validator.kubevirt.io", "virtualmachineinstancemigrations", UPDATE, MIGRATION_UPDATE_VALIDATE_PATH),
)  # fmt: skip

_MUTATING_TEMPLATES = (
    ("virtualmachines-mutator.kubevirt.io", "virtualmachines", CREATE_UPDATE, VM_MUTATE_PATH),
    ("virtualmachineinstances-mutator.kubevirt.io", "virtualmachineinstances", CREATE, VMI_MUTATE_PATH),
    ("migrations-mutator.kubevirt.io", "virtualmachineinstancemigrations", CREATE, MIGRATION_MUTATE_PATH),
)  # fmt: skip


def webhook_rules(
    kind: WebhookKind, api_group: str, api_versions: list[str]
) -> list[WebhookRule]:
    """Ordered admission rules of one webhook configuration."""
    templates = (
        _VALIDATING_TEMPLATES if kind is WebhookKind.VALIDATING else _MUTATING_TEMPLATES
    )
    return [
        WebhookRule(
            name=name,
            resource=resource,
            operations=operations,
            api_group=api_group,
            api_versions=tuple(api_versions),
            path=path,
        )
        for name, resource, operations, path in templates
    ]


def desired_webhook_configuration(
    kind: WebhookKind, rules: list[WebhookRule], service: ServiceCoordinates
) -> dict[str, Any]:
    """Complete webhook configuration virt-api wants the control plane to hold."""
    return {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": kind.api_kind,
        "metadata": {
            "name": kind.configuration_name,
            "labels": {
                APP_LABEL: kind.configuration_name,
                MANAGED_BY_LABEL: MANAGED_BY_OPERATOR,
            },
        },
        "webhooks": [rule.to_webhook(service) for rule in rules],
    }


def merge_webhook_configuration(
    existing: dict[str, Any], desired: dict[str, Any]
) -> dict[str, Any]:
    """
    Fold the desired webhooks into an existing configuration.

    The ownership label moves to operator-managed and the webhook list is
    replaced wholesale; every other field of ``existing`` is kept.
    """
    merged = with_operator_ownership(existing)
    merged["webhooks"] = copy.deepcopy(desired["webhooks"])
    return merged


class WebhookRegistrar(BaseRegistrar):
    """Declares the admission webhooks and binds their callback paths."""

    def __init__(
        self,
        router: ApiRouter,
        handlers: Mapping[str, AdmissionHandler],
        api_group: str,
        api_versions: list[str],
        k8s_client: client.ApiClient | None = None,
    ):
        """
        Initialize the registrar.

        Args:
            router: Router the callback paths are bound on
            handlers: External admission handlers keyed by callback path
            api_group: API group of the admission-controlled resources
            api_versions: API versions the rules match
            k8s_client: Kubernetes API client, will be created if not provided
        """
        super().__init__(k8s_client)
        self.router = router
        self.handlers = handlers
        self.api_group = api_group
        self.api_versions = api_versions
        self._api: client.AdmissionregistrationV1Api | None = None

    @property
    def api(self) -> client.AdmissionregistrationV1Api:
        if self._api is None:
            self._api = client.AdmissionregistrationV1Api(self.kubernetes_client)
        return self._api

    async def reconcile(
        self, kind: WebhookKind, namespace: str, service_name: str, ca_bundle: bytes
    ) -> str:
        """
        Declare one webhook configuration and bind its callback paths.

        Args:
            kind: Validating or mutating
            namespace: Namespace of the virt-api Service
            service_name: Name of the virt-api Service
            ca_bundle: PEM CA bytes the control plane verifies virt-api with

        Returns:
            "created" or "updated"

        Raises:
            ConfigurationError: If a declared path has no handler
            ControlPlaneError: If the declaration cannot be read or written
        """
        rules = webhook_rules(kind, self.api_group, self.api_versions)
        missing = [rule.path for rule in rules if rule.path not in self.handlers]
        if missing:
            raise ConfigurationError(
                f"No admission handler for {', '.join(missing)}",
                field="ADMISSION_HANDLERS",
            )

        service = ServiceCoordinates(
            namespace=namespace, name=service_name, ca_bundle=ca_bundle
        )
        desired = desired_webhook_configuration(kind, rules, service)

        if kind is WebhookKind.VALIDATING:
            outcome = self.reconcile_declaration(
                resource_type=kind.api_kind,
                desired=desired,
                namespace=namespace,
                read=self.api.read_validating_webhook_configuration,
                create=self.api.create_validating_webhook_configuration,
                replace=self.api.replace_validating_webhook_configuration,
                merge=merge_webhook_configuration,
            )
        else:
            outcome = self.reconcile_declaration(
                resource_type=kind.api_kind,
                desired=desired,
                namespace=namespace,
                read=self.api.read_mutating_webhook_configuration,
                create=self.api.create_mutating_webhook_configuration,
                replace=self.api.replace_mutating_webhook_configuration,
                merge=merge_webhook_configuration,
            )

        bound = self.router.admission_paths
        for rule in rules:
            if rule.path not in bound:
                self.router.add_admission_route(
                    rule.path, self.handlers[rule.path], kind
                )
        return outcome
