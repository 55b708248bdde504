"""
Kubernetes utilities for virt-api.

This module provides helper functions for interacting with the Kubernetes API:
- Kubernetes client management and configuration
- A tagged result for create calls so "already exists" drives a fetch
  instead of being inspected as an error
- Conversion of API models to plain dictionaries
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)

# Raised by the client when the API server cannot be reached at all
TRANSPORT_ERRORS = (HTTPError, OSError)

KubernetesError = ApiException | HTTPError | OSError

_serializer = client.ApiClient()


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    This function handles both in-cluster and local development configurations.

    Returns:
        Configured Kubernetes API client
    """
    try:
        # Try in-cluster config first (when running in a pod)
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            # Fall back to local kubeconfig (for development)
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def to_dict(obj: Any) -> Any:
    """Convert a kubernetes model (or a dict of them) to its JSON form."""
    return _serializer.sanitize_for_serialization(obj)


@dataclass(frozen=True)
class Created:
    """The record was created."""

    record: Any


@dataclass(frozen=True)
class Conflict:
    """A record with the same name already exists."""


@dataclass(frozen=True)
class Failed:
    """The create call failed for any other reason."""

    error: KubernetesError


CreateResult = Created | Conflict | Failed


def attempt_create(create: Callable[..., Any], **kwargs: Any) -> CreateResult:
    """
    Call a kubernetes create function and classify the outcome.

    Args:
        create: Bound API method such as ``CoreV1Api.create_namespaced_secret``
        **kwargs: Arguments forwarded to the create function

    Returns:
        Created with the returned record, Conflict on HTTP 409, Failed on any
        other API or transport error
    """
    try:
        return Created(create(**kwargs))
    except ApiException as e:
        if e.status == 409:
            return Conflict()
        return Failed(e)
    except TRANSPORT_ERRORS as e:
        return Failed(e)


def error_reason(error: KubernetesError) -> str:
    """Short reason of a failed call, for error messages."""
    if isinstance(error, ApiException):
        return error.reason or f"HTTP {error.status}"
    return f"{type(error).__name__}: {error}"


def read_optional(read: Callable[..., Any], **kwargs: Any) -> Any | None:
    """
    Call a kubernetes read function, mapping 404 to None.

    Any other ApiException, and transport errors, propagate to the caller.
    """
    try:
        return read(**kwargs)
    except ApiException as e:
        if e.status == 404:
            return None
        raise
