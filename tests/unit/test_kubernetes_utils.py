"""
Unit tests for Kubernetes utility functions.
"""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from virt_api.utils.kubernetes import (
    Conflict,
    Created,
    Failed,
    attempt_create,
    error_reason,
    get_kubernetes_client,
    read_optional,
    to_dict,
)


class TestAttemptCreate:
    """Tests for the tagged create result."""

    def test_created(self):
        create = MagicMock(return_value={"metadata": {"name": "x"}})

        result = attempt_create(create, body={"metadata": {"name": "x"}})

        assert result == Created({"metadata": {"name": "x"}})
        create.assert_called_once_with(body={"metadata": {"name": "x"}})

    def test_conflict(self):
        create = MagicMock(side_effect=ApiException(status=409, reason="AlreadyExists"))

        assert isinstance(attempt_create(create, body={}), Conflict)

    def test_failed(self):
        error = ApiException(status=403, reason="Forbidden")
        create = MagicMock(side_effect=error)

        result = attempt_create(create, body={})

        assert isinstance(result, Failed)
        assert result.error is error

    @pytest.mark.parametrize(
        "error",
        [
            MaxRetryError(None, "/api/v1/secrets", reason="connection refused"),
            ConnectionRefusedError("connection refused"),
        ],
    )
    def test_unreachable_api_server_is_failed(self, error):
        create = MagicMock(side_effect=error)

        result = attempt_create(create, body={})

        assert isinstance(result, Failed)
        assert result.error is error
        assert error_reason(error).startswith(type(error).__name__)

    def test_other_exceptions_propagate(self):
        create = MagicMock(side_effect=ValueError("bad body"))

        with pytest.raises(ValueError):
            attempt_create(create, body={})


class TestReadOptional:
    def test_returns_record(self):
        assert read_optional(MagicMock(return_value="record"), name="x") == "record"

    def test_not_found_is_none(self):
        read = MagicMock(side_effect=ApiException(status=404))

        assert read_optional(read, name="x") is None

    def test_other_errors_propagate(self):
        read = MagicMock(side_effect=ApiException(status=500))

        with pytest.raises(ApiException):
            read_optional(read, name="x")


class TestErrorReason:
    def test_api_exception_reason(self):
        assert error_reason(ApiException(status=403, reason="Forbidden")) == "Forbidden"

    def test_api_exception_without_reason(self):
        assert error_reason(ApiException(status=500)) == "HTTP 500"


class TestToDict:
    def test_models_use_wire_names(self):
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(name="s", resource_version="5"),
            data={"k": "dg=="},
        )

        assert to_dict(secret) == {
            "metadata": {"name": "s", "resourceVersion": "5"},
            "data": {"k": "dg=="},
        }

    def test_dicts_pass_through(self):
        assert to_dict({"a": [1, {"b": None}]}) == {"a": [1, {"b": None}]}


class TestGetKubernetesClient:
    def test_falls_back_to_kubeconfig(self):
        with (
            patch.object(
                config, "load_incluster_config", side_effect=config.ConfigException("no pod")
            ),
            patch.object(config, "load_kube_config") as load_kube_config,
        ):
            api_client = get_kubernetes_client()

        load_kube_config.assert_called_once()
        assert isinstance(api_client, client.ApiClient)

    def test_raises_without_any_configuration(self):
        with (
            patch.object(
                config, "load_incluster_config", side_effect=config.ConfigException("no pod")
            ),
            patch.object(
                config, "load_kube_config", side_effect=config.ConfigException("no file")
            ),
        ):
            with pytest.raises(config.ConfigException):
                get_kubernetes_client()
