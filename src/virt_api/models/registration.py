"""
Models for declarations virt-api registers with the control plane.

Defines:
- WebhookKind: validating or mutating admission webhooks
- WebhookRule: one admission webhook entry bound to a callback path
- ServiceCoordinates: where the control plane reaches virt-api
"""

import base64
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..constants import (
    ADMISSION_REVIEW_VERSIONS,
    FAILURE_POLICY_FAIL,
    MUTATING_WEBHOOK_NAME,
    VALIDATING_WEBHOOK_NAME,
)


class WebhookKind(str, Enum):
    """Admission webhook configuration flavours."""

    VALIDATING = "validating"
    MUTATING = "mutating"

    @property
    def configuration_name(self) -> str:
        if self is WebhookKind.VALIDATING:
            return VALIDATING_WEBHOOK_NAME
        return MUTATING_WEBHOOK_NAME

    @property
    def api_kind(self) -> str:
        if self is WebhookKind.VALIDATING:
            return "ValidatingWebhookConfiguration"
        return "MutatingWebhookConfiguration"


class ServiceCoordinates(BaseModel):
    """In-cluster service reference plus the CA bundle that verifies it."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    ca_bundle: bytes

    @property
    def ca_bundle_b64(self) -> str:
        """CA bundle as the base64 string the API expects for byte fields."""
        return base64.b64encode(self.ca_bundle).decode()


class WebhookRule(BaseModel):
    """
    A single admission webhook entry.

    The identity of a rule is its (resource, path) pair. Rules are kept in
    ordered lists since the control plane evaluates them in declared order.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Fully qualified webhook name")
    resource: str = Field(..., description="Plural resource the rule matches")
    operations: tuple[str, ...] = Field(..., description="Admission operations")
    api_group: str = Field(..., description="API group of the resource")
    api_versions: tuple[str, ...] = Field(..., description="Matched API versions")
    path: str = Field(..., description="Callback path on the virt-api service")

    def to_webhook(self, service: ServiceCoordinates) -> dict[str, Any]:
        """Render the rule as an admissionregistration.k8s.io/v1 webhook."""
        return {
            "name": self.name,
            "failurePolicy": FAILURE_POLICY_FAIL,
            "sideEffects": "None",
            "admissionReviewVersions": list(ADMISSION_REVIEW_VERSIONS),
            "rules": [
                {
                    "operations": list(self.operations),
                    "apiGroups": [self.api_group],
                    "apiVersions": list(self.api_versions),
                    "resources": [self.resource],
                }
            ],
            "clientConfig": {
                "service": {
                    "namespace": service.namespace,
                    "name": service.name,
                    "path": self.path,
                },
                "caBundle": service.ca_bundle_b64,
            },
        }
