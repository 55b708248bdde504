"""
Self-signed identity provisioning for virt-api.

This module mints a CA and a serving certificate for the virt-api Service and
persists them in a Secret. Provisioning is get-or-create: an existing Secret is
always reused as-is, so every replica and every restart serves the same
identity until the Secret is deleted.
"""

import base64
import binascii
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    APP_LABEL,
    APP_LABEL_AGGREGATOR,
    CA_COMMON_NAME,
    CA_VALIDITY_DAYS,
    CERT_BYTES_KEY,
    CERT_SECRET_NAME,
    CERT_VALIDITY_DAYS,
    CLUSTER_DOMAIN,
    IDENTITY_FIELDS,
    KEY_BYTES_KEY,
    RSA_KEY_SIZE,
    SIGNING_CERT_BYTES_KEY,
)
from ..errors import ConfigurationError, EncodingError, StorageError
from ..models import Identity
from ..utils.kubernetes import (
    TRANSPORT_ERRORS,
    Conflict,
    Created,
    attempt_create,
    error_reason,
)

logger = logging.getLogger(__name__)


def _generate_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def _encode_key(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def service_dns_names(service_name: str, namespace: str) -> list[str]:
    """DNS names under which the Service is reachable inside the cluster."""
    return [
        service_name,
        f"{service_name}.{namespace}",
        f"{service_name}.{namespace}.svc",
        f"{service_name}.{namespace}.svc.{CLUSTER_DOMAIN}",
    ]


def mint_identity(namespace: str, service_name: str) -> Identity:
    """
    Create a self-signed CA and a serving certificate issued by it.

    Args:
        namespace: Namespace of the virt-api Service
        service_name: Name of the virt-api Service

    Returns:
        A fresh Identity, including the CA private key
    """
    now = datetime.now(UTC)

    ca_key = _generate_key()
    ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME)])
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(ca_name)
        .issuer_name(ca_name)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=CA_VALIDITY_DAYS))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                key_cert_sign=True,
                key_agreement=False,
                content_commitment=False,
                data_encipherment=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    key = _generate_key()
    common_name = f"{service_name}.{namespace}.pod.{CLUSTER_DOMAIN}"
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=CERT_VALIDITY_DAYS))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                key_cert_sign=False,
                key_agreement=False,
                content_commitment=False,
                data_encipherment=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName(name)
                    for name in [common_name, *service_dns_names(service_name, namespace)]
                ]
            ),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    return Identity(
        ca_cert=ca_cert.public_bytes(serialization.Encoding.PEM),
        ca_key=_encode_key(ca_key),
        cert=cert.public_bytes(serialization.Encoding.PEM),
        key=_encode_key(key),
    )


class CertificateProvisioner:
    """Obtains the virt-api identity from its Secret, creating it on first use."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    async def ensure_identity(self, namespace: str, service_name: str) -> Identity:
        """
        Return the persisted identity, minting and storing one if absent.

        Args:
            namespace: Namespace holding the identity Secret
            service_name: Name of the Service the leaf certificate is issued for

        Returns:
            Identity read back from the persisted record

        Raises:
            StorageError: If the Secret cannot be created or read
            ConfigurationError: If the Secret lacks one of the identity fields
            EncodingError: If a field is not valid base64 PEM content
        """
        fresh = mint_identity(namespace, service_name)
        body = self._secret_body(namespace, fresh)

        result = attempt_create(
            self.v1.create_namespaced_secret, namespace=namespace, body=body
        )
        if isinstance(result, Created):
            logger.info(f"Created identity secret {namespace}/{CERT_SECRET_NAME}")
            return fresh
        if isinstance(result, Conflict):
            logger.info(
                f"Identity secret {namespace}/{CERT_SECRET_NAME} exists, reusing it"
            )
            secret = self._read_secret(namespace)
            return self._identity_from_data(secret.data)

        raise StorageError(
            f"Failed to create secret {namespace}/{CERT_SECRET_NAME}",
            reason=error_reason(result.error),
            cause=result.error,
        )

    def _read_secret(self, namespace: str) -> client.V1Secret:
        try:
            return self.v1.read_namespaced_secret(
                name=CERT_SECRET_NAME, namespace=namespace
            )
        except (ApiException, *TRANSPORT_ERRORS) as e:
            raise StorageError(
                f"Failed to read secret {namespace}/{CERT_SECRET_NAME}",
                reason=error_reason(e),
                cause=e,
            ) from e

    @staticmethod
    def _secret_body(namespace: str, identity: Identity) -> dict[str, Any]:
        return {
            "metadata": {
                "name": CERT_SECRET_NAME,
                "namespace": namespace,
                "labels": {APP_LABEL: APP_LABEL_AGGREGATOR},
            },
            "type": "Opaque",
            "data": {
                CERT_BYTES_KEY: base64.b64encode(identity.cert).decode(),
                KEY_BYTES_KEY: base64.b64encode(identity.key).decode(),
                SIGNING_CERT_BYTES_KEY: base64.b64encode(identity.ca_cert).decode(),
            },
        }

    @staticmethod
    def _identity_from_data(data: dict[str, str] | None) -> Identity:
        data = data or {}
        decoded: dict[str, bytes] = {}
        for field in IDENTITY_FIELDS:
            value = data.get(field)
            if not value:
                raise ConfigurationError(
                    f"{field} value not found in {CERT_SECRET_NAME} virt-api secret",
                    field=field,
                    user_action=f"Delete secret {CERT_SECRET_NAME} so it is recreated",
                )
            try:
                decoded[field] = base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as e:
                raise EncodingError(
                    f"{field} in {CERT_SECRET_NAME} is not valid base64", cause=e
                ) from e

        for field in (CERT_BYTES_KEY, SIGNING_CERT_BYTES_KEY):
            try:
                x509.load_pem_x509_certificate(decoded[field])
            except ValueError as e:
                raise EncodingError(
                    f"{field} in {CERT_SECRET_NAME} is not a PEM certificate", cause=e
                ) from e

        return Identity(
            ca_cert=decoded[SIGNING_CERT_BYTES_KEY],
            cert=decoded[CERT_BYTES_KEY],
            key=decoded[KEY_BYTES_KEY],
        )
