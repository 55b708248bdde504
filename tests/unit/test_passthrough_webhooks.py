"""
Unit tests for the default admission handlers.
"""

import pytest

from virt_api.models import WebhookKind
from virt_api.server.admission import call_handler
from virt_api.services.webhook_registrar import webhook_rules
from virt_api.webhooks.passthrough import build_handlers


class TestPassthroughHandlers:
    def test_every_declared_path_has_a_handler(self):
        handlers = build_handlers({})

        for kind in WebhookKind:
            for rule in webhook_rules(kind, "kubevirt.io", ["v1alpha3"]):
                assert rule.path in handlers

    @pytest.mark.asyncio
    async def test_handlers_admit(self):
        handlers = build_handlers({})
        request = {"uid": "1", "operation": "CREATE", "object": {"metadata": {}}}

        for path, handler in handlers.items():
            response = await call_handler(handler, request, WebhookKind.MUTATING)
            assert response == {"uid": "1", "allowed": True}, path
