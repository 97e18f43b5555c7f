"""
Pydantic models for secondary webhook endpoints.

Endpoints are built once at startup from configuration and never change
afterwards. Each carries its own CA bundle; it is the only trust root used
when calling that endpoint.
"""

import base64
import binascii
import re
import ssl
from enum import Enum

from pydantic import BaseModel, Field, field_validator

# RFC 1123 label, as required for Service and Namespace names
DNS_LABEL_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class FailurePolicy(str, Enum):
    """How errors from an endpoint map onto the admission verdict."""

    FAIL = "Fail"
    IGNORE = "Ignore"


def decode_ca_bundle(encoded: str) -> str:
    """Decode a base64 PEM CA bundle and make sure it parses.

    Raises:
        ValueError: If the value is not base64 or holds no usable certificate
    """
    try:
        pem = base64.b64decode(encoded.strip(), validate=True).decode("ascii")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"CA bundle is not valid base64 PEM: {e}") from e
    try:
        ssl.create_default_context(cadata=pem)
    except (ssl.SSLError, ValueError) as e:
        raise ValueError(f"CA bundle does not contain a usable certificate: {e}") from e
    return pem


class SecondaryWebhookEndpoint(BaseModel):
    """Call target of one downstream validating webhook."""

    model_config = {"populate_by_name": True, "frozen": True}

    name: str = Field(..., min_length=1, description="Name referenced by rule sets")
    service_name: str = Field(..., alias="serviceName", min_length=1)
    namespace: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    path: str = Field(..., min_length=1)
    ca_bundle: str = Field(
        ..., alias="caBundle", min_length=1, description="Decoded PEM trust roots"
    )
    failure_policy: FailurePolicy = Field(FailurePolicy.FAIL, alias="failurePolicy")

    @field_validator("service_name", "namespace")
    @classmethod
    def validate_dns_label(cls, v):
        if len(v) > 63 or not DNS_LABEL_PATTERN.match(v):
            raise ValueError(
                "must be a DNS-1123 label (lowercase alphanumerics and '-', at most 63 characters)"
            )
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v):
        if not v.startswith("/"):
            raise ValueError("path must start with '/'")
        return v

    @property
    def url(self) -> str:
        return f"https://{self.service_name}.{self.namespace}.svc:{self.port}{self.path}"

    def ssl_context(self) -> ssl.SSLContext:
        """TLS context trusting exactly this endpoint's CA bundle."""
        return ssl.create_default_context(cadata=self.ca_bundle)
