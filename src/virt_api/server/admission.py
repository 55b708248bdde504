"""
AdmissionReview envelope handling for admission callbacks.

The validation and mutation logic lives in external handlers. They follow
the kopf admission handler convention: they are called with keyword
arguments, deny a request by raising ``kopf.AdmissionError``, and express
mutations by modifying the ``patch`` they receive.
"""

import base64
import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

import kopf
from aiohttp import web

from ..models import WebhookKind

logger = logging.getLogger(__name__)

AdmissionHandler = Callable[..., Any]

DEFAULT_REVIEW_API_VERSION = "admission.k8s.io/v1"


def _review_response(api_version: str, response: dict[str, Any]) -> web.Response:
    return web.json_response(
        {"apiVersion": api_version, "kind": "AdmissionReview", "response": response}
    )


async def call_handler(
    handler: AdmissionHandler, request: dict[str, Any], kind: WebhookKind
) -> dict[str, Any]:
    """
    Run an admission handler and build the AdmissionResponse.

    Args:
        handler: External admission handler
        request: The ``request`` member of the AdmissionReview
        kind: Whether the callback belongs to the validating or mutating set

    Returns:
        The ``response`` member of the AdmissionReview
    """
    uid = request.get("uid", "")
    body = request.get("object") or {}
    patch = kopf.Patch(body=body)

    try:
        result = handler(
            request=request,
            body=body,
            old=request.get("oldObject"),
            operation=request.get("operation", ""),
            namespace=request.get("namespace"),
            name=request.get("name"),
            dryrun=bool(request.get("dryRun", False)),
            patch=patch,
        )
        if inspect.isawaitable(result):
            await result
    except kopf.AdmissionError as e:
        logger.info(f"Admission request {uid} denied: {e}")
        return {
            "uid": uid,
            "allowed": False,
            "status": {"message": str(e), "code": e.code or 500},
        }
    except Exception as e:
        # Failure policy is Fail, so an erroring handler must not admit
        logger.error(f"Admission handler failed for request {uid}: {e}", exc_info=True)
        return {
            "uid": uid,
            "allowed": False,
            "status": {"message": f"internal error: {type(e).__name__}", "code": 500},
        }

    response: dict[str, Any] = {"uid": uid, "allowed": True}
    json_patch = patch.as_json_patch() if kind is WebhookKind.MUTATING else []
    if json_patch:
        response["patchType"] = "JSONPatch"
        response["patch"] = base64.b64encode(json.dumps(json_patch).encode()).decode()
    return response


def admission_endpoint(handler: AdmissionHandler, kind: WebhookKind):
    """Wrap an admission handler as an aiohttp request handler."""

    async def serve(request: web.Request) -> web.Response:
        if request.content_type != "application/json":
            return web.Response(
                status=400,
                text=f"contentType={request.content_type}, expect application/json",
            )
        try:
            review = await request.json()
        except json.JSONDecodeError as e:
            return web.Response(status=400, text=f"malformed AdmissionReview: {e}")

        admission_request = review.get("request") if isinstance(review, dict) else None
        if not isinstance(admission_request, dict):
            return web.Response(status=400, text="AdmissionReview has no request")

        response = await call_handler(handler, admission_request, kind)
        return _review_response(
            review.get("apiVersion", DEFAULT_REVIEW_API_VERSION), response
        )

    return serve
