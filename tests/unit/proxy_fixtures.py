"""Builders for ProxyValidatingType bodies, endpoints and test certificates.

Imported explicitly by test modules; conftest.py only holds fixtures.
"""

import base64
from pathlib import Path
from typing import Any

from admission_proxy.constants import TYPE_FINALIZER
from admission_proxy.models.endpoint import FailurePolicy, SecondaryWebhookEndpoint

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


def read_ca(name: str) -> str:
    return (FIXTURES_DIR / f"{name}.pem").read_text()


def encode_ca(name: str) -> str:
    return base64.b64encode(read_ca(name).encode()).decode()


def make_endpoint(
    name: str = "policy",
    failure_policy: FailurePolicy = FailurePolicy.FAIL,
    ca: str = "secondary-ca-one",
) -> SecondaryWebhookEndpoint:
    return SecondaryWebhookEndpoint(
        name=name,
        service_name=f"{name}-svc",
        namespace="webhooks",
        port=443,
        path="/validate",
        ca_bundle=read_ca(ca),
        failure_policy=failure_policy,
    )


def make_rule(
    operations=("CREATE",),
    api_groups=("apps",),
    api_versions=("v1",),
    resources=("deployments",),
) -> dict[str, Any]:
    return {
        "operations": list(operations),
        "apiGroups": list(api_groups),
        "apiVersions": list(api_versions),
        "resources": list(resources),
    }


def make_proxy_type(
    name: str = "deployments",
    uid: str | None = None,
    rules: list[dict[str, Any]] | None = None,
    webhooks: list[str] | None = None,
    generation: int = 1,
    observed_generation: int | None = None,
    finalizers: list[str] | None = None,
    deleting: bool = False,
) -> dict[str, Any]:
    """Raw ProxyValidatingType body as returned by the API server."""
    metadata: dict[str, Any] = {
        "name": name,
        "uid": uid or f"uid-{name}",
        "generation": generation,
        "resourceVersion": "100",
        "finalizers": list(finalizers or []),
    }
    if deleting:
        metadata["deletionTimestamp"] = "2026-01-01T00:00:00Z"

    body: dict[str, Any] = {
        "apiVersion": "admissionproxy.dev/v1alpha1",
        "kind": "ProxyValidatingType",
        "metadata": metadata,
        "spec": {"types": rules if rules is not None else [make_rule()]},
    }
    if webhooks is not None:
        body["spec"]["webhooks"] = webhooks
    if observed_generation is not None:
        body["status"] = {"observedGeneration": observed_generation}
    return body


def admitted(body: dict[str, Any]) -> dict[str, Any]:
    """Same resource after its finalizer and status have been written."""
    body["metadata"]["finalizers"].append(TYPE_FINALIZER)
    body["status"] = {"observedGeneration": body["metadata"]["generation"]}
    return body


