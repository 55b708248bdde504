"""
Dynamic request-header trust configuration.

The kube-apiserver publishes the CA that signs its front-proxy client
certificates, and the headers carrying the proxied identity, in the
``kube-system/extension-apiserver-authentication`` ConfigMap. DynamicCAPool
keeps the latest valid version of that record available to TLS handshakes
and to request authorization.
"""

import json
import logging
import threading
from typing import Any, Generic, TypeVar

from cryptography import x509

from ..constants import (
    AUTH_CONFIGMAP_NAME,
    AUTH_CONFIGMAP_NAMESPACE,
    REQUEST_HEADER_CLIENT_CA_KEY,
    REQUEST_HEADER_EXTRA_PREFIXES_KEY,
    REQUEST_HEADER_GROUP_HEADERS_KEY,
    REQUEST_HEADER_USERNAME_HEADERS_KEY,
)
from ..errors import BootstrapError, ConfigurationError, EncodingError
from ..models import TrustConfig, TrustSnapshot
from ..utils.watch_cache import EVENT_DELETED, EVENT_MODIFIED, WatchCache, object_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTH_CONFIGMAP_KEY = f"{AUTH_CONFIGMAP_NAMESPACE}/{AUTH_CONFIGMAP_NAME}"


class SnapshotCell(Generic[T]):
    """
    Single-writer, multi-reader holder of an immutable value.

    Readers get whichever complete value was last published; a value is never
    modified in place.
    """

    def __init__(self, value: T | None = None):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> T | None:
        with self._lock:
            return self._value

    def set(self, value: T) -> None:
        with self._lock:
            self._value = value


def deserialize_strings(raw: str | None, key: str) -> tuple[str, ...]:
    """
    Decode a JSON encoded list of header names.

    Empty or absent values mean "no headers".

    Raises:
        EncodingError: If the value is not a JSON array of strings
    """
    if not raw:
        return ()
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as e:
        raise EncodingError(f"{key} is not valid JSON: {e}", cause=e) from e
    if decoded is None:
        return ()
    if not isinstance(decoded, list) or not all(isinstance(v, str) for v in decoded):
        raise EncodingError(f"{key} must be a JSON array of strings")
    return tuple(decoded)


def parse_trust_config(data: dict[str, str] | None) -> TrustConfig:
    """
    Build a TrustConfig from the ConfigMap data.

    Raises:
        ConfigurationError: If the request-header client CA is missing
        EncodingError: If the CA is not PEM or a header list is malformed
    """
    data = data or {}
    client_ca = data.get(REQUEST_HEADER_CLIENT_CA_KEY)
    if client_ca is None:
        raise ConfigurationError(
            f"{REQUEST_HEADER_CLIENT_CA_KEY} not found in {AUTH_CONFIGMAP_NAME} ConfigMap",
            field=REQUEST_HEADER_CLIENT_CA_KEY,
            user_action="Enable request-header authentication on the kube-apiserver",
        )
    try:
        x509.load_pem_x509_certificates(client_ca.encode())
    except ValueError as e:
        raise EncodingError(
            f"{REQUEST_HEADER_CLIENT_CA_KEY} does not contain PEM certificates",
            cause=e,
        ) from e

    return TrustConfig(
        request_header_client_ca=client_ca,
        username_headers=deserialize_strings(
            data.get(REQUEST_HEADER_USERNAME_HEADERS_KEY),
            REQUEST_HEADER_USERNAME_HEADERS_KEY,
        ),
        group_headers=deserialize_strings(
            data.get(REQUEST_HEADER_GROUP_HEADERS_KEY),
            REQUEST_HEADER_GROUP_HEADERS_KEY,
        ),
        extra_header_prefixes=deserialize_strings(
            data.get(REQUEST_HEADER_EXTRA_PREFIXES_KEY),
            REQUEST_HEADER_EXTRA_PREFIXES_KEY,
        ),
    )


def _snapshot_from(obj: dict[str, Any]) -> TrustSnapshot:
    revision = (obj.get("metadata") or {}).get("resourceVersion", "")
    return TrustSnapshot(config=parse_trust_config(obj.get("data")), revision=revision)


class DynamicCAPool:
    """Current trusted client CAs and proxied identity headers."""

    def __init__(self, cache: WatchCache):
        """
        Initialize the pool.

        Args:
            cache: Synced watch cache of the authentication ConfigMap
        """
        self.cache = cache
        self._cell: SnapshotCell[TrustSnapshot] = SnapshotCell()

    def load_initial(self) -> TrustSnapshot:
        """
        Read the trust configuration from the synced cache.

        Raises:
            ConfigurationError: If the ConfigMap or the client CA is missing
            EncodingError: If the ConfigMap content is malformed
        """
        obj = self.cache.get(AUTH_CONFIGMAP_KEY)
        if obj is None:
            raise ConfigurationError(
                f"ConfigMap {AUTH_CONFIGMAP_KEY} not found",
                user_action="Enable request-header authentication on the kube-apiserver",
            )
        snapshot = _snapshot_from(obj)
        self._cell.set(snapshot)
        logger.info(
            f"Loaded request-header trust configuration (revision {snapshot.revision})",
            extra={"revision": snapshot.revision},
        )
        return snapshot

    def watch(self) -> None:
        """
        Follow updates of the ConfigMap through the cache.

        A version stored after load_initial() but before the subscription is
        applied immediately.
        """
        self.cache.add_listener(self._on_event)
        obj = self.cache.get(AUTH_CONFIGMAP_KEY)
        if obj is not None:
            self._on_event(EVENT_MODIFIED, obj)

    def current(self) -> TrustSnapshot:
        """Most recent valid snapshot. Never blocks on the network."""
        snapshot = self._cell.get()
        if snapshot is None:
            raise RuntimeError("trust configuration accessed before load_initial()")
        return snapshot

    def _on_event(self, event_type: str, obj: dict[str, Any]) -> None:
        if object_key(obj) != AUTH_CONFIGMAP_KEY:
            return
        if event_type == EVENT_DELETED:
            logger.warning(
                f"ConfigMap {AUTH_CONFIGMAP_KEY} deleted, keeping previous trust configuration"
            )
            return

        current = self._cell.get()
        revision = (obj.get("metadata") or {}).get("resourceVersion", "")
        if current is not None and revision and current.revision == revision:
            return

        try:
            snapshot = _snapshot_from(obj)
        except BootstrapError as e:
            logger.error(
                f"Ignoring invalid update of {AUTH_CONFIGMAP_KEY}: {e}",
                extra={"revision": revision, "error_type": type(e).__name__},
            )
            return

        self._cell.set(snapshot)
        logger.info(
            f"Reloaded request-header trust configuration (revision {revision})",
            extra={"revision": revision},
        )
