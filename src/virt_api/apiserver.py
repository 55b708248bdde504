#!/usr/bin/env python3
"""
virt-api - Main entry point of the KubeVirt extension API server.

Startup runs strictly in this order:
1. The authentication ConfigMap cache syncs and the trust configuration loads
2. The serving identity is obtained from its Secret, or minted and stored
3. One APIService per subresource version is declared
4. The caches used by admission handlers sync
5. The validating and mutating webhook configurations are declared and their
   callback paths bound
6. The HTTPS listener starts, with trust following the ConfigMap from then on

Any failure before serving is fatal and the process exits with status 1.
SIGINT and SIGTERM stop startup at the next gate, or shut the listener down.

Usage:
    virt-api
    # Or:
    python -m virt_api.apiserver

Environment Variables:
    POD_NAMESPACE: Namespace virt-api runs in
    ADMISSION_HANDLERS: Import path of the admission handler factory
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import importlib
import logging
import signal
import sys
import threading
from collections.abc import Mapping

from kubernetes import client, config

from virt_api.constants import (
    AUTH_CONFIGMAP_NAME,
    AUTH_CONFIGMAP_NAMESPACE,
    CACHE_AUTH_CONFIGMAP,
    CACHE_KUBEVIRT_CONFIG,
    CACHE_NAMESPACE_LIMITS,
    CACHE_VMI,
    CACHE_VMI_PRESET,
    KUBEVIRT_CONFIGMAP_NAME,
)
from virt_api.errors import BootstrapError, ConfigurationError
from virt_api.models import WebhookKind
from virt_api.observability.logging import setup_structured_logging
from virt_api.server.admission import AdmissionHandler
from virt_api.server.authorization import SubjectAccessReviewAuthorizer
from virt_api.server.https import ApiServer
from virt_api.server.router import ApiRouter
from virt_api.services import (
    AggregatedServiceRegistrar,
    CertificateProvisioner,
    DynamicCAPool,
    StartupSynchronizer,
    TLSContextBuilder,
    TLSServingPolicy,
    WebhookRegistrar,
)
from virt_api.settings import Settings
from virt_api.settings import settings as api_settings
from virt_api.utils.kubernetes import get_kubernetes_client
from virt_api.utils.watch_cache import WatchCache

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure structured logging based on api_settings."""
    setup_structured_logging(
        log_level=api_settings.log_level.upper(),
        enable_json_formatting=api_settings.json_logs,
        correlation_id_enabled=api_settings.correlation_ids,
        log_health_probes=api_settings.log_health_probes,
    )


def load_handlers(
    import_path: str, caches: Mapping[str, WatchCache]
) -> Mapping[str, AdmissionHandler]:
    """
    Import an admission handler factory and build the handlers.

    Args:
        import_path: ``module:callable`` of the factory
        caches: Synced watch caches keyed by name, passed to the factory

    Returns:
        Admission handlers keyed by callback path

    Raises:
        ConfigurationError: If the factory cannot be imported or misbehaves
    """
    module_name, _, attribute = import_path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(
            f"Invalid admission handler factory '{import_path}'",
            field="ADMISSION_HANDLERS",
            user_action="Use the form 'package.module:factory'",
        )
    try:
        factory = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"Cannot load admission handler factory '{import_path}': {e}",
            field="ADMISSION_HANDLERS",
        ) from e

    handlers = factory(caches)
    if not isinstance(handlers, Mapping):
        raise ConfigurationError(
            f"Admission handler factory '{import_path}' did not return a mapping",
            field="ADMISSION_HANDLERS",
        )
    return handlers


class VirtApi:
    """One virt-api process: startup sequence followed by serving."""

    def __init__(
        self,
        app_settings: Settings,
        stop: threading.Event,
        k8s_client: client.ApiClient | None = None,
    ):
        """
        Initialize virt-api.

        Args:
            app_settings: Process configuration
            stop: Process-wide shutdown signal
            k8s_client: Kubernetes API client, loaded from the environment if not provided
        """
        self.settings = app_settings
        self.stop = stop
        self.k8s_client = k8s_client or self._load_client()
        self.router = ApiRouter()
        self.synchronizer = StartupSynchronizer(
            stop, poll_interval=app_settings.cache_sync_poll_seconds
        )
        self.provisioner = CertificateProvisioner(self.k8s_client)
        self.apiservice_registrar = AggregatedServiceRegistrar(
            app_settings.subresource_group, self.k8s_client
        )
        self.pool: DynamicCAPool | None = None

    @staticmethod
    def _load_client() -> client.ApiClient:
        try:
            return get_kubernetes_client()
        except config.ConfigException as e:
            raise ConfigurationError(
                f"No Kubernetes configuration available: {e}",
                user_action="Run in a pod or provide a kubeconfig",
            ) from e

    def _cache(self, name: str, list_func, **list_kwargs) -> WatchCache:
        return WatchCache(
            name,
            list_func,
            timeout_seconds=self.settings.watch_timeout_seconds,
            **list_kwargs,
        )

    def auth_cache(self) -> WatchCache:
        """Cache of the request-header authentication ConfigMap."""
        core = client.CoreV1Api(self.k8s_client)
        return self._cache(
            CACHE_AUTH_CONFIGMAP,
            core.list_namespaced_config_map,
            namespace=AUTH_CONFIGMAP_NAMESPACE,
            field_selector=f"metadata.name={AUTH_CONFIGMAP_NAME}",
        )

    def webhook_caches(self) -> list[WatchCache]:
        """Caches the admission handlers read from."""
        core = client.CoreV1Api(self.k8s_client)
        custom = client.CustomObjectsApi(self.k8s_client)
        version = self.settings.webhook_api_versions[0]
        return [
            self._cache(
                CACHE_VMI,
                custom.list_cluster_custom_object,
                group=self.settings.kubevirt_group,
                version=version,
                plural="virtualmachineinstances",
            ),
            self._cache(
                CACHE_VMI_PRESET,
                custom.list_cluster_custom_object,
                group=self.settings.kubevirt_group,
                version=version,
                plural="virtualmachineinstancepresets",
            ),
            self._cache(
                CACHE_NAMESPACE_LIMITS, core.list_limit_range_for_all_namespaces
            ),
            self._cache(
                CACHE_KUBEVIRT_CONFIG,
                core.list_namespaced_config_map,
                namespace=self.settings.namespace,
                field_selector=f"metadata.name={KUBEVIRT_CONFIGMAP_NAME}",
            ),
        ]

    async def bootstrap(self) -> TLSServingPolicy | None:
        """
        Run the startup sequence.

        Returns:
            The TLS serving policy, or None if shutdown was requested at a gate

        Raises:
            BootstrapError: If any startup step fails
        """
        namespace = self.settings.namespace
        service_name = self.settings.service_name

        auth_cache = self.auth_cache()
        auth_cache.start(self.stop)
        if not await self.synchronizer.wait_ready([auth_cache]):
            return None

        pool = DynamicCAPool(auth_cache)
        pool.load_initial()
        pool.watch()
        self.pool = pool

        identity = await self.provisioner.ensure_identity(namespace, service_name)

        for version in self.settings.subresource_versions:
            await self.apiservice_registrar.reconcile(
                namespace, service_name, version, identity.ca_bundle
            )

        caches = self.webhook_caches()
        for cache in caches:
            cache.start(self.stop)
        if not await self.synchronizer.wait_ready(caches):
            return None

        handlers = load_handlers(
            self.settings.admission_handlers, {cache.name: cache for cache in caches}
        )
        registrar = WebhookRegistrar(
            self.router,
            handlers,
            self.settings.kubevirt_group,
            self.settings.webhook_api_versions,
            self.k8s_client,
        )
        for kind in (WebhookKind.VALIDATING, WebhookKind.MUTATING):
            await registrar.reconcile(
                kind, namespace, service_name, identity.ca_bundle
            )

        return TLSContextBuilder(self.settings.certs_dir).build(identity, pool)

    async def serve(self, policy: TLSServingPolicy) -> None:
        """Serve until the shutdown signal is set."""
        authorizer = SubjectAccessReviewAuthorizer(
            policy.pool,
            self.router,
            self.settings.subresource_group,
            api=client.AuthorizationV1Api(self.k8s_client),
        )
        server = ApiServer(
            self.router,
            policy.context,
            authorizer,
            host=self.settings.bind_address,
            port=self.settings.port,
        )
        try:
            await server.start()
        except OSError as e:
            raise ConfigurationError(
                f"Cannot listen on {self.settings.bind_address}:{self.settings.port}: {e}",
                field="VIRT_API_PORT",
            ) from e
        try:
            await asyncio.to_thread(self.stop.wait)
        finally:
            await server.stop()

    async def run(self) -> int:
        """
        Bootstrap and serve.

        Returns:
            Process exit status
        """
        try:
            policy = await self.bootstrap()
            if policy is None:
                logger.info("Shutdown requested during startup")
                return 0
            await self.serve(policy)
        except BootstrapError as e:
            logger.error(
                f"virt-api startup failed: {e}",
                extra={"error_type": type(e).__name__},
            )
            return 1
        finally:
            # Releases the watch threads
            self.stop.set()

        logger.info("virt-api stopped")
        return 0


async def _run_until_signalled(stop: threading.Event) -> int:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)
    return await VirtApi(api_settings, stop).run()


def main() -> None:
    """
    Main entry point for virt-api.

    Configures logging, runs the startup sequence and serves until SIGINT or
    SIGTERM, then exits with the resulting status.
    """
    configure_logging()
    logger.info("Starting virt-api...")

    stop = threading.Event()
    try:
        exit_code = asyncio.run(_run_until_signalled(stop))
    except BootstrapError as e:
        logger.error(f"virt-api startup failed: {e}")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
