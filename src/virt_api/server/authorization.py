"""
Request authorization for virt-api.

Every request passes the authorization gate before it reaches a handler.
The default authorizer trusts identities proxied by the kube-apiserver:
the caller must present a client certificate verified against the current
request-header CA, and the user, groups and extra attributes it forwards in
headers are checked with a SubjectAccessReview.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Protocol
from urllib.parse import unquote

from aiohttp import web
from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import DISCOVERY_PATHS
from ..errors import InternalError
from ..models import TrustConfig
from ..observability.logging import (
    BootstrapLogger,
    generate_correlation_id,
    set_correlation_id,
)
from ..services.ca_pool import DynamicCAPool
from ..utils.kubernetes import TRANSPORT_ERRORS, error_reason
from .router import ApiRouter

logger = logging.getLogger(__name__)

HTTP_VERBS = {
    "GET": "get",
    "HEAD": "get",
    "PUT": "update",
    "POST": "create",
    "PATCH": "patch",
    "DELETE": "delete",
}


class Authorizer(Protocol):
    """Decides whether a request may proceed."""

    async def authorize(self, request: web.Request) -> tuple[bool, str]:
        """
        Returns:
            (allowed, reason); reason explains a denial

        Raises:
            InternalError: If a decision could not be made
        """
        ...


def authorization_gate(authorizer: Authorizer):
    """
    aiohttp middleware wiring an Authorizer in front of every handler.

    Internal failures answer 500, denials answer 401 with the reason, and
    allowed requests continue unmodified.
    """

    @web.middleware
    async def gate(request: web.Request, handler):
        set_correlation_id(generate_correlation_id())
        try:
            allowed, reason = await authorizer.authorize(request)
        except Exception as e:
            logger.error(f"internal error during auth request: {e}", exc_info=True)
            return web.Response(status=500)

        if allowed:
            return await handler(request)
        return web.Response(status=401, text=reason)

    return gate


def has_verified_peer_certificate(request: web.Request) -> bool:
    """True if the TLS peer presented a client certificate that verified."""
    transport = request.transport
    if transport is None:
        return False
    return bool(transport.get_extra_info("peercert"))


def proxied_user(request: web.Request, trust: TrustConfig) -> str | None:
    for header in trust.username_headers:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return None


def proxied_groups(request: web.Request, trust: TrustConfig) -> list[str]:
    groups: list[str] = []
    for header in trust.group_headers:
        groups.extend(value for value in request.headers.getall(header, []) if value)
    return groups


def proxied_extra(request: web.Request, trust: TrustConfig) -> dict[str, list[str]]:
    extra: dict[str, list[str]] = defaultdict(list)
    for header, value in request.headers.items():
        lowered = header.lower()
        for prefix in trust.extra_header_prefixes:
            if lowered.startswith(prefix.lower()):
                key = unquote(lowered[len(prefix) :])
                extra[key].append(value)
    return dict(extra)


class SubjectAccessReviewAuthorizer:
    """Authorizes proxied identities against the cluster's RBAC."""

    def __init__(
        self,
        pool: DynamicCAPool,
        router: ApiRouter,
        subresource_group: str,
        api: client.AuthorizationV1Api | None = None,
    ):
        """
        Initialize the authorizer.

        Args:
            pool: Source of the proxied identity header names
            router: Router whose admission paths bypass identity checks
            subresource_group: Aggregated API group served by virt-api
            api: AuthorizationV1Api client, will be created if not provided
        """
        self.pool = pool
        self.router = router
        self.subresource_group = subresource_group
        self._api = api
        self.audit = BootstrapLogger(self.__class__.__name__)

    @property
    def api(self) -> client.AuthorizationV1Api:
        if self._api is None:
            self._api = client.AuthorizationV1Api()
        return self._api

    def is_public_path(self, path: str) -> bool:
        """Discovery endpoints and admission callbacks need no proxied identity."""
        if path in DISCOVERY_PATHS or path in self.router.admission_paths:
            return True
        parts = path.strip("/").split("/")
        if parts[:2] != ["apis", self.subresource_group]:
            return False
        return len(parts) <= 3 or (len(parts) == 4 and parts[3] in ("version", "healthz"))

    def resource_attributes(
        self, request: web.Request
    ) -> client.V1ResourceAttributes | None:
        """Resource attributes of ``/apis/<g>/<v>/namespaces/<ns>/<res>/<name>/<sub>``."""
        parts = request.path.strip("/").split("/")
        if len(parts) != 8 or parts[0] != "apis" or parts[3] != "namespaces":
            return None
        verb = HTTP_VERBS.get(request.method)
        if verb is None:
            return None
        return client.V1ResourceAttributes(
            group=parts[1],
            version=parts[2],
            namespace=parts[4],
            resource=parts[5],
            name=parts[6],
            subresource=parts[7],
            verb=verb,
        )

    async def authorize(self, request: web.Request) -> tuple[bool, str]:
        if self.is_public_path(request.path):
            return True, ""

        if not has_verified_peer_certificate(request):
            return self._deny(request, None, "request is not authenticated")

        trust = self.pool.current().config
        user = proxied_user(request, trust)
        if user is None:
            return self._deny(request, None, "no user found in request headers")

        attributes = self.resource_attributes(request)
        if attributes is None:
            return self._deny(request, user, f"unknown api endpoint: {request.path}")

        review = client.V1SubjectAccessReview(
            spec=client.V1SubjectAccessReviewSpec(
                user=user,
                groups=proxied_groups(request, trust),
                extra=proxied_extra(request, trust),
                resource_attributes=attributes,
            )
        )
        try:
            result = await asyncio.to_thread(
                self.api.create_subject_access_review, body=review
            )
        except (ApiException, *TRANSPORT_ERRORS) as e:
            raise InternalError(
                f"SubjectAccessReview failed: {error_reason(e)}", cause=e
            ) from e

        if result.status and result.status.allowed:
            self.audit.log_authorization_audit(request.method, request.path, user, True)
            return True, ""
        reason = (result.status.reason if result.status else None) or "access denied"
        return self._deny(request, user, reason)

    def _deny(
        self, request: web.Request, user: str | None, reason: str
    ) -> tuple[bool, str]:
        self.audit.log_authorization_audit(
            request.method, request.path, user, False, reason
        )
        return False, reason
