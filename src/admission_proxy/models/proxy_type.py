"""
Pydantic models for ProxyValidatingType resources.

A ProxyValidatingType declares which admission requests the primary webhook
should intercept and, optionally, which secondary webhooks receive them.
Rules follow the platform's RuleWithOperations shape.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from admission_proxy.constants import ADMISSION_OPERATIONS, WILDCARD


def _matches(values: tuple[str, ...], value: str) -> bool:
    return WILDCARD in values or value in values


def _resource_matches(pattern: str, resource: str, subresource: str) -> bool:
    """Match one rule resource entry ("pods", "pods/status", "*/scale", "*/*")."""
    name, _, sub = pattern.partition("/")
    if name != WILDCARD and name != resource:
        return False
    if not sub:
        return not subresource
    return sub == WILDCARD or sub == subresource


class RuleWithOperations(BaseModel):
    """One group/version/resource/operation matching rule."""

    model_config = {"populate_by_name": True, "frozen": True}

    operations: tuple[str, ...] = Field(
        ..., min_length=1, description="Admission operations (CREATE, UPDATE, ...)"
    )
    api_groups: tuple[str, ...] = Field(
        ..., alias="apiGroups", min_length=1, description="API groups; '' is core"
    )
    api_versions: tuple[str, ...] = Field(
        ..., alias="apiVersions", min_length=1, description="API versions"
    )
    resources: tuple[str, ...] = Field(
        ..., min_length=1, description="Resources, optionally with /subresource"
    )
    scope: str | None = Field(
        None, description="Cluster, Namespaced or * (API server default: *)"
    )

    @field_validator("operations")
    @classmethod
    def validate_operations(cls, v):
        allowed = ADMISSION_OPERATIONS | {WILDCARD}
        invalid = [op for op in v if op not in allowed]
        if invalid:
            raise ValueError(
                f"Unsupported operations {invalid}; must be one of {sorted(allowed)}"
            )
        return v

    @field_validator("scope")
    @classmethod
    def validate_scope(cls, v):
        if v is not None and v not in ("Cluster", "Namespaced", WILDCARD):
            raise ValueError("scope must be one of Cluster, Namespaced, *")
        return v

    def matches(
        self,
        group: str,
        version: str,
        resource: str,
        operation: str,
        subresource: str = "",
    ) -> bool:
        """Check whether an admission request falls under this rule."""
        return (
            _matches(self.operations, operation)
            and _matches(self.api_groups, group)
            and _matches(self.api_versions, version)
            and any(
                _resource_matches(pattern, resource, subresource)
                for pattern in self.resources
            )
        )

    def to_k8s(self) -> dict[str, Any]:
        """Render as an admissionregistration RuleWithOperations dict."""
        rule: dict[str, Any] = {
            "apiGroups": list(self.api_groups),
            "apiVersions": list(self.api_versions),
            "operations": list(self.operations),
            "resources": list(self.resources),
        }
        if self.scope is not None:
            rule["scope"] = self.scope
        return rule


class ProxyValidatingTypeSpec(BaseModel):
    """Specification of a ProxyValidatingType resource."""

    model_config = {"populate_by_name": True}

    types: list[RuleWithOperations] = Field(
        ..., min_length=1, description="Requests to intercept on behalf of this declarant"
    )
    webhooks: list[str] = Field(
        default_factory=list,
        description="Secondary webhook names to delegate to (empty means all)",
    )

    @field_validator("webhooks")
    @classmethod
    def validate_webhooks(cls, v):
        if any(not name.strip() for name in v):
            raise ValueError("webhook names must be non-empty")
        return v


class ProxyValidatingTypeStatus(BaseModel):
    """Status of a ProxyValidatingType resource."""

    model_config = {"populate_by_name": True}

    observed_generation: int = Field(0, alias="observedGeneration")
