"""
virt-api - trust bootstrap and control-plane registration for the KubeVirt
extension API server.

This package provides:
- A persisted self-signed serving identity
- Webhook and aggregated API registration with the control plane
- A TLS listener trusting the kube-apiserver's front proxy at runtime
- Startup gates ordering cache sync, registration and serving
"""

__version__ = "0.1.0"
