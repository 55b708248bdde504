"""
Trust configuration models.

TrustConfig mirrors the request-header authentication settings the
kube-apiserver publishes for extension API servers. TrustSnapshot pins one
version of it so readers always observe a complete configuration.
"""

from pydantic import BaseModel, ConfigDict, Field


class TrustConfig(BaseModel):
    """Request-header client CA and proxied identity header names."""

    model_config = ConfigDict(frozen=True)

    request_header_client_ca: str = Field(
        ..., description="PEM bundle of CAs allowed to sign front-proxy client certs"
    )
    username_headers: tuple[str, ...] = Field(
        (), description="Headers carrying the user name, checked in order"
    )
    group_headers: tuple[str, ...] = Field(
        (), description="Headers carrying group memberships"
    )
    extra_header_prefixes: tuple[str, ...] = Field(
        (), description="Prefixes of headers carrying extra user attributes"
    )


class TrustSnapshot(BaseModel):
    """An immutable TrustConfig tagged with the revision it was read from."""

    model_config = ConfigDict(frozen=True)

    config: TrustConfig
    revision: str = Field("", description="resourceVersion of the source record")
