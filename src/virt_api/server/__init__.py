"""
HTTPS serving layer of virt-api.

Holds the explicit router, the AdmissionReview adapter for admission
callbacks, the authorization gate and the TLS listener.
"""
