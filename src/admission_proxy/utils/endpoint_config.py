"""
Loading and validation of the secondary webhook endpoint configuration.

Endpoints come from a YAML file (``SECONDARY_WEBHOOKS_FILE``), from the
single-endpoint ``ADM_SERVICE_*`` environment variables, or both. The whole
configuration is validated once at startup and every problem is reported
with the field it concerns, so a bad deployment fails fast instead of
failing individual admission calls later.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from admission_proxy.errors import ConfigurationError
from admission_proxy.models.endpoint import SecondaryWebhookEndpoint, decode_ca_bundle
from admission_proxy.settings import Settings

logger = logging.getLogger(__name__)

LEGACY_ENDPOINT_NAME = "default"

LEGACY_FIELDS = {
    "serviceName": "ADM_SERVICE_NAME",
    "namespace": "ADM_SERVICE_NAMESPACE",
    "port": "ADM_SERVICE_PORT",
    "path": "ADM_SERVICE_ENDPOINT",
    "caBundle": "ADM_SERVICE_CABUNDLE",
    "failurePolicy": "ADM_SERVICE_FAILURE_POLICY",
}


@dataclass
class EndpointValidationResult:
    """Outcome of validating the endpoint configuration."""

    endpoints: list[SecondaryWebhookEndpoint] = field(default_factory=list)
    errors: list[ConfigurationError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _parse_endpoint(
    raw: Any, label: str, field_names: dict[str, str] | None = None
) -> tuple[SecondaryWebhookEndpoint | None, list[ConfigurationError]]:
    """Validate one raw endpoint mapping.

    ``field_names`` maps wire keys to the names reported in errors; by
    default errors are reported as ``{label}.{key}``.
    """

    def report_name(key: str) -> str:
        if field_names and key in field_names:
            return field_names[key]
        return f"{label}.{key}"

    if not isinstance(raw, dict):
        return None, [ConfigurationError("expected a mapping", field=label)]

    errors: list[ConfigurationError] = []
    data = dict(raw)

    ca_rejected = False
    if data.get("caBundle"):
        try:
            data["caBundle"] = decode_ca_bundle(str(data["caBundle"]))
        except ValueError as e:
            errors.append(ConfigurationError(str(e), field=report_name("caBundle")))
            data.pop("caBundle")
            ca_rejected = True

    try:
        endpoint = SecondaryWebhookEndpoint.model_validate(data)
    except PydanticValidationError as e:
        for detail in e.errors():
            key = str(detail["loc"][0]) if detail["loc"] else label
            if key == "caBundle" and ca_rejected:
                continue
            errors.append(ConfigurationError(detail["msg"], field=report_name(key)))
        return None, errors

    if errors:
        return None, errors
    return endpoint, []


def _load_file(path: str, result: EndpointValidationResult) -> None:
    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        result.errors.append(
            ConfigurationError(f"cannot read file: {e}", field="SECONDARY_WEBHOOKS_FILE")
        )
        return
    except yaml.YAMLError as e:
        result.errors.append(
            ConfigurationError(f"invalid YAML: {e}", field="SECONDARY_WEBHOOKS_FILE")
        )
        return

    if document is None:
        return
    if isinstance(document, dict):
        document = document.get("webhooks") or []
    if not isinstance(document, list):
        result.errors.append(
            ConfigurationError(
                "expected a list of endpoints", field="SECONDARY_WEBHOOKS_FILE"
            )
        )
        return

    for index, raw in enumerate(document):
        name = raw.get("name") if isinstance(raw, dict) else None
        label = f"webhooks[{name or index}]"
        endpoint, errors = _parse_endpoint(raw, label)
        if endpoint:
            result.endpoints.append(endpoint)
        result.errors.extend(errors)


def _load_legacy(settings: Settings, result: EndpointValidationResult) -> None:
    values = {
        "serviceName": settings.adm_service_name,
        "namespace": settings.adm_service_namespace,
        "port": settings.adm_service_port.strip(),
        "path": settings.adm_service_endpoint,
        "caBundle": settings.adm_service_cabundle,
        "failurePolicy": settings.adm_service_failure_policy,
    }
    raw = {key: value for key, value in values.items() if value}
    raw["name"] = LEGACY_ENDPOINT_NAME

    endpoint, errors = _parse_endpoint(raw, "ADM_SERVICE", LEGACY_FIELDS)
    if endpoint:
        result.endpoints.append(endpoint)
    result.errors.extend(errors)


def load_secondary_endpoints(settings: Settings) -> EndpointValidationResult:
    """
    Build and validate the secondary endpoints from configuration.

    Args:
        settings: Operator settings

    Returns:
        Validation result holding the endpoints in configuration order and
        one ConfigurationError per offending field. Endpoint names must be
        unique.
    """
    result = EndpointValidationResult()

    if settings.secondary_webhooks_file:
        _load_file(settings.secondary_webhooks_file, result)

    if settings.legacy_endpoint_configured:
        _load_legacy(settings, result)

    seen: set[str] = set()
    for endpoint in result.endpoints:
        if endpoint.name in seen:
            result.errors.append(
                ConfigurationError(
                    f"duplicate endpoint name {endpoint.name!r}", field="name"
                )
            )
        seen.add(endpoint.name)

    if result.valid and not result.endpoints:
        logger.warning(
            "No secondary webhooks configured; every admission request will be allowed"
        )

    return result
