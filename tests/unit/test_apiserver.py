"""
Unit tests for the virt-api startup sequence.

Caches are replaced by in-memory fakes and the registrars by mocks, so the
tests observe the order in which startup steps run and where it stops.
"""

import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from virt_api.apiserver import VirtApi, load_handlers
from virt_api.errors import ConfigurationError, ControlPlaneError
from virt_api.models import WebhookKind
from virt_api.settings import Settings
from virt_api.webhooks.passthrough import ADMISSION_PATHS


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        POD_NAMESPACE="kubevirt",
        VIRT_API_CERTS_DIR=str(tmp_path / "certs"),
        SUBRESOURCE_VERSIONS="v1alpha3",
        CACHE_SYNC_POLL_SECONDS=0.001,
    )


@pytest.fixture
def app(app_settings, auth_cache, make_cache, identity):
    app = VirtApi(app_settings, threading.Event(), k8s_client=MagicMock())
    app.provisioner = MagicMock()
    app.provisioner.ensure_identity = AsyncMock(return_value=identity)
    app.apiservice_registrar = MagicMock()
    app.apiservice_registrar.reconcile = AsyncMock(return_value="created")
    app.webhook_cache_fakes = [make_cache(name) for name in ("vmis", "limitranges")]
    app.auth_cache = MagicMock(return_value=auth_cache)
    app.webhook_caches = MagicMock(return_value=app.webhook_cache_fakes)
    return app


@pytest.fixture
def webhook_registrar():
    with patch("virt_api.apiserver.WebhookRegistrar") as registrar_cls:
        registrar_cls.return_value.reconcile = AsyncMock(return_value="created")
        yield registrar_cls


class TestBootstrap:
    """Tests for the ordered startup sequence."""

    @pytest.mark.asyncio
    async def test_full_sequence(self, app, auth_cache, identity, webhook_registrar):
        policy = await app.bootstrap()

        assert policy is not None
        assert auth_cache.started
        assert all(cache.started for cache in app.webhook_cache_fakes)
        app.provisioner.ensure_identity.assert_awaited_once_with("kubevirt", "virt-api")
        app.apiservice_registrar.reconcile.assert_awaited_once_with(
            "kubevirt", "virt-api", "v1alpha3", identity.ca_bundle
        )
        kinds = [
            call.args[0] for call in webhook_registrar.return_value.reconcile.await_args_list
        ]
        assert kinds == [WebhookKind.VALIDATING, WebhookKind.MUTATING]
        handlers = webhook_registrar.call_args.args[1]
        assert set(handlers) == set(ADMISSION_PATHS)
        assert app.pool.current().revision == "1"

    @pytest.mark.asyncio
    async def test_missing_trust_field_stops_before_registration(
        self, app, make_cache, make_auth_configmap, webhook_registrar
    ):
        app.auth_cache.return_value = make_cache("auth", [make_auth_configmap(None)])

        assert await app.run() == 1

        app.provisioner.ensure_identity.assert_not_awaited()
        app.apiservice_registrar.reconcile.assert_not_awaited()
        webhook_registrar.return_value.reconcile.assert_not_awaited()
        assert app.stop.is_set()

    @pytest.mark.asyncio
    async def test_stop_at_auth_gate(self, app, auth_cache, webhook_registrar):
        auth_cache.has_synced = False
        app.stop.set()

        assert await app.bootstrap() is None

        app.provisioner.ensure_identity.assert_not_awaited()
        app.webhook_caches.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_at_webhook_gate(self, app, webhook_registrar):
        app.webhook_cache_fakes[0].has_synced = False

        def stop_after_start(stop):
            app.stop.set()

        app.webhook_cache_fakes[0].start = stop_after_start

        assert await app.bootstrap() is None

        app.apiservice_registrar.reconcile.assert_awaited_once()
        webhook_registrar.return_value.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_registration_failure_is_fatal(self, app, webhook_registrar):
        app.apiservice_registrar.reconcile.side_effect = ControlPlaneError("Forbidden")

        assert await app.run() == 1
        webhook_registrar.return_value.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_apiservice_per_version(self, app, app_settings, webhook_registrar):
        app.settings = app_settings.model_copy(
            update={"subresource_versions_csv": "v1alpha3,v1"}
        )

        await app.bootstrap()

        versions = [
            call.args[2] for call in app.apiservice_registrar.reconcile.await_args_list
        ]
        assert versions == ["v1alpha3", "v1"]

    @pytest.mark.asyncio
    async def test_run_serves_until_stopped(self, app, webhook_registrar):
        with patch("virt_api.apiserver.ApiServer") as server_cls:
            server = server_cls.return_value
            server.start = AsyncMock(side_effect=lambda: app.stop.set())
            server.stop = AsyncMock()

            assert await app.run() == 0

        server.start.assert_awaited_once()
        server.stop.assert_awaited_once()
        assert server_cls.call_args.kwargs["port"] == 443

    @pytest.mark.asyncio
    async def test_listen_failure_exits_non_zero(self, app, webhook_registrar):
        with patch("virt_api.apiserver.ApiServer") as server_cls:
            server = server_cls.return_value
            server.start = AsyncMock(side_effect=OSError("address already in use"))
            server.stop = AsyncMock()

            assert await app.run() == 1

        server.stop.assert_not_awaited()
        assert app.stop.is_set()


class TestLoadHandlers:
    """Tests for loading the admission handler factory."""

    def test_loads_default_factory(self):
        handlers = load_handlers("virt_api.webhooks.passthrough:build_handlers", {})

        assert set(handlers) == set(ADMISSION_PATHS)

    @pytest.mark.parametrize(
        "import_path",
        [
            "virt_api.webhooks.passthrough",
            "virt_api.webhooks.missing_module:build_handlers",
            "virt_api.webhooks.passthrough:missing_factory",
        ],
    )
    def test_unusable_factory_is_configuration_error(self, import_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_handlers(import_path, {})

        assert exc_info.value.field == "ADMISSION_HANDLERS"

    def test_factory_must_return_mapping(self):
        with patch("virt_api.webhooks.passthrough.build_handlers", return_value=[]):
            with pytest.raises(ConfigurationError):
                load_handlers("virt_api.webhooks.passthrough:build_handlers", {})
