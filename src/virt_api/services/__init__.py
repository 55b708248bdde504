"""
Services package - bootstrap services of virt-api.

Contains:
- Identity provisioning
- Dynamic request-header trust and the TLS serving policy
- Control-plane registrars for webhooks and aggregated APIs
- Startup synchronization gates
"""

from .apiservice_registrar import AggregatedServiceRegistrar
from .ca_pool import DynamicCAPool
from .certificate_provisioner import CertificateProvisioner
from .startup import StartupSynchronizer
from .tls import TLSContextBuilder, TLSServingPolicy
from .webhook_registrar import WebhookRegistrar

__all__ = [
    "AggregatedServiceRegistrar",
    "CertificateProvisioner",
    "DynamicCAPool",
    "StartupSynchronizer",
    "TLSContextBuilder",
    "TLSServingPolicy",
    "WebhookRegistrar",
]
