"""
Unit tests for the AdmissionReview adapter.
"""

import base64
import json

import kopf
import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from virt_api.models import WebhookKind
from virt_api.server.admission import call_handler
from virt_api.server.router import ApiRouter


def review(uid: str = "abc-123", operation: str = "CREATE", **request) -> dict:
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "operation": operation,
            "namespace": "default",
            "name": "testvm",
            "object": {"metadata": {"name": "testvm", "namespace": "default"}, "spec": {}},
            **request,
        },
    }


async def allow(**_):
    return None


async def deny(**_):
    raise kopf.AdmissionError("spec.domain is required", code=422)


async def add_label(patch, **_):
    patch.setdefault("metadata", {})["labels"] = {"kubevirt.io/mutated": "true"}


def broken(**_):
    raise KeyError("spec")


class TestCallHandler:
    """Tests for handler invocation and response construction."""

    @pytest.mark.asyncio
    async def test_allowed(self):
        response = await call_handler(allow, review()["request"], WebhookKind.VALIDATING)

        assert response == {"uid": "abc-123", "allowed": True}

    @pytest.mark.asyncio
    async def test_handler_receives_request_fields(self):
        seen = {}

        def handler(**kwargs):
            seen.update(kwargs)

        request = review(operation="UPDATE", oldObject={"spec": {"old": True}}, dryRun=True)
        await call_handler(handler, request["request"], WebhookKind.VALIDATING)

        assert seen["operation"] == "UPDATE"
        assert seen["namespace"] == "default"
        assert seen["name"] == "testvm"
        assert seen["old"] == {"spec": {"old": True}}
        assert seen["dryrun"] is True
        assert seen["body"]["metadata"]["name"] == "testvm"

    @pytest.mark.asyncio
    async def test_admission_error_denies(self):
        response = await call_handler(deny, review()["request"], WebhookKind.VALIDATING)

        assert response["allowed"] is False
        assert response["status"] == {"message": "spec.domain is required", "code": 422}

    @pytest.mark.asyncio
    async def test_unexpected_error_denies(self):
        response = await call_handler(broken, review()["request"], WebhookKind.VALIDATING)

        assert response["allowed"] is False
        assert response["status"]["code"] == 500

    @pytest.mark.asyncio
    async def test_mutating_patch_is_returned(self):
        response = await call_handler(add_label, review()["request"], WebhookKind.MUTATING)

        assert response["allowed"] is True
        assert response["patchType"] == "JSONPatch"
        patch = json.loads(base64.b64decode(response["patch"]))
        assert patch
        assert all(op["path"].startswith("/metadata") for op in patch)

    @pytest.mark.asyncio
    async def test_validating_handlers_never_patch(self):
        response = await call_handler(add_label, review()["request"], WebhookKind.VALIDATING)

        assert "patch" not in response

    @pytest.mark.asyncio
    async def test_mutating_without_changes_has_no_patch(self):
        response = await call_handler(allow, review()["request"], WebhookKind.MUTATING)

        assert "patch" not in response
        assert "patchType" not in response


@pytest.fixture
async def client():
    router = ApiRouter()
    router.add_admission_route("/virtualmachines-validate", deny, WebhookKind.VALIDATING)
    router.add_admission_route("/virtualmachines-mutate", add_label, WebhookKind.MUTATING)
    app = web.Application()
    router.install(app)
    async with TestClient(TestServer(app)) as cli:
        yield cli


class TestAdmissionEndpoint:
    """Tests for the HTTP envelope."""

    @pytest.mark.asyncio
    async def test_review_response_echoes_uid(self, client):
        resp = await client.post("/virtualmachines-validate", json=review(uid="u-1"))

        assert resp.status == 200
        body = await resp.json()
        assert body["apiVersion"] == "admission.k8s.io/v1"
        assert body["kind"] == "AdmissionReview"
        assert body["response"]["uid"] == "u-1"
        assert body["response"]["allowed"] is False

    @pytest.mark.asyncio
    async def test_v1beta1_review_is_echoed(self, client):
        payload = review()
        payload["apiVersion"] = "admission.k8s.io/v1beta1"

        resp = await client.post("/virtualmachines-mutate", json=payload)

        body = await resp.json()
        assert body["apiVersion"] == "admission.k8s.io/v1beta1"
        assert body["response"]["patchType"] == "JSONPatch"

    @pytest.mark.asyncio
    async def test_wrong_content_type_is_rejected(self, client):
        resp = await client.post(
            "/virtualmachines-validate",
            data=json.dumps(review()),
            headers={"Content-Type": "text/plain"},
        )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_malformed_body_is_rejected(self, client):
        resp = await client.post(
            "/virtualmachines-validate",
            data="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_review_without_request_is_rejected(self, client):
        resp = await client.post("/virtualmachines-validate", json={"kind": "AdmissionReview"})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_only_post_is_routed(self, client):
        resp = await client.get("/virtualmachines-validate")

        assert resp.status == 405
