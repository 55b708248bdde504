"""Shared pytest fixtures for virt-api unit tests."""

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from virt_api.constants import (
    AUTH_CONFIGMAP_NAME,
    AUTH_CONFIGMAP_NAMESPACE,
    REQUEST_HEADER_CLIENT_CA_KEY,
    REQUEST_HEADER_EXTRA_PREFIXES_KEY,
    REQUEST_HEADER_GROUP_HEADERS_KEY,
    REQUEST_HEADER_USERNAME_HEADERS_KEY,
)
from virt_api.services.certificate_provisioner import mint_identity


class CertificateAuthority:
    """Throwaway CA able to issue client certificates."""

    def __init__(self, common_name: str):
        self.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        now = datetime.now(UTC)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=1))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.key, hashes.SHA256())
        )

    @property
    def pem(self) -> str:
        return self.cert.public_bytes(serialization.Encoding.PEM).decode()

    def issue_client(self, common_name: str) -> tuple[bytes, bytes]:
        """Client certificate and key, PEM encoded."""
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        now = datetime.now(UTC)
        cert = (
            x509.CertificateBuilder()
            .subject_name(
                x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
            )
            .issuer_name(self.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=1))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]), critical=False
            )
            .sign(self.key, hashes.SHA256())
        )
        return (
            cert.public_bytes(serialization.Encoding.PEM),
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )


class FakeCache:
    """In-memory stand-in for a synced WatchCache."""

    def __init__(self, name: str = "fake", objects: list[dict[str, Any]] | None = None):
        self.name = name
        self.has_synced = True
        self.started = False
        self._store = {_key(obj): obj for obj in objects or []}
        self._listeners = []

    def get(self, key: str):
        return self._store.get(key)

    def items(self):
        return list(self._store.values())

    def add_listener(self, listener) -> None:
        self._listeners.append(listener)

    def start(self, stop) -> None:
        self.started = True

    def emit(self, event_type: str, obj: dict[str, Any]) -> None:
        if event_type == "DELETED":
            self._store.pop(_key(obj), None)
        else:
            self._store[_key(obj)] = obj
        for listener in self._listeners:
            listener(event_type, obj)


def _key(obj: dict[str, Any]) -> str:
    metadata = obj["metadata"]
    if metadata.get("namespace"):
        return f"{metadata['namespace']}/{metadata['name']}"
    return metadata["name"]


def auth_configmap(
    client_ca: str | None,
    revision: str = "1",
    username_headers: list[str] | None = None,
    group_headers: list[str] | None = None,
    extra_prefixes: list[str] | None = None,
) -> dict[str, Any]:
    """The kube-apiserver's request-header authentication ConfigMap."""
    data = {
        REQUEST_HEADER_USERNAME_HEADERS_KEY: json.dumps(
            username_headers if username_headers is not None else ["X-Remote-User"]
        ),
        REQUEST_HEADER_GROUP_HEADERS_KEY: json.dumps(
            group_headers if group_headers is not None else ["X-Remote-Group"]
        ),
        REQUEST_HEADER_EXTRA_PREFIXES_KEY: json.dumps(
            extra_prefixes if extra_prefixes is not None else ["X-Remote-Extra-"]
        ),
    }
    if client_ca is not None:
        data[REQUEST_HEADER_CLIENT_CA_KEY] = client_ca
    return {
        "metadata": {
            "name": AUTH_CONFIGMAP_NAME,
            "namespace": AUTH_CONFIGMAP_NAMESPACE,
            "resourceVersion": revision,
        },
        "data": data,
    }


@pytest.fixture(scope="session")
def identity():
    """A freshly minted virt-api identity."""
    return mint_identity("kubevirt", "virt-api")


@pytest.fixture(scope="session")
def front_proxy_ca():
    """CA signing the kube-apiserver's front-proxy client certificate."""
    return CertificateAuthority("front-proxy-ca")


@pytest.fixture(scope="session")
def other_ca():
    """CA nobody trusts."""
    return CertificateAuthority("untrusted-ca")


@pytest.fixture
def auth_cache(front_proxy_ca):
    """Synced cache holding a valid authentication ConfigMap."""
    return FakeCache("auth", [auth_configmap(front_proxy_ca.pem)])


@pytest.fixture
def make_cache():
    """Factory of FakeCache instances."""
    return FakeCache


@pytest.fixture
def make_auth_configmap():
    """Factory of authentication ConfigMaps."""
    return auth_configmap
