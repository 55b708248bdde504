"""
Identity model for the self-signed serving certificate.
"""

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """
    TLS identity of virt-api.

    All fields are PEM encoded. The CA private key is only known to the
    process that minted the identity; it is never persisted.
    """

    model_config = ConfigDict(frozen=True)

    ca_cert: bytes = Field(..., description="PEM encoded CA certificate")
    cert: bytes = Field(..., description="PEM encoded leaf certificate")
    key: bytes = Field(..., description="PEM encoded leaf private key")
    ca_key: bytes | None = Field(
        None, description="PEM encoded CA private key (fresh identities only)"
    )

    @property
    def ca_bundle(self) -> bytes:
        """CA bytes callers use to verify the leaf certificate."""
        return self.ca_cert
