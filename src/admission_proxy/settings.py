"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from admission_proxy.constants import (
    DEFAULT_CERT_DIR,
    DEFAULT_PRIMARY_TIMEOUT_SECONDS,
    DEFAULT_PROXY_PATH,
    DEFAULT_PROXY_SERVICE_NAME,
    DEFAULT_PROXY_SERVICE_PORT,
    DEFAULT_WEBHOOK_CALL_TIMEOUT,
    DEFAULT_WEBHOOK_CONFIGURATION_NAME,
    DEFAULT_WEBHOOK_NAME,
)
from admission_proxy.models.endpoint import FailurePolicy


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_namespace: str = Field(
        default="admission-proxy",
        description="Namespace where the operator and its service are deployed",
        validation_alias="OPERATOR_NAMESPACE",
    )
    operator_name: str = Field(
        default="admission-proxy-operator",
        description="Name of the operator deployment (used as kopf peering name)",
        validation_alias="OPERATOR_NAME",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log health probe requests (suppressed by default)",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    # Primary admission endpoint
    webhook_port: int = Field(
        default=8443,
        validation_alias="WEBHOOK_PORT",
        description="Port for the primary admission endpoint",
    )
    webhook_host: str = Field(
        default="0.0.0.0",
        validation_alias="WEBHOOK_HOST",
        description="Host address to bind the primary admission endpoint",
    )
    cert_dir: str = Field(
        default=DEFAULT_CERT_DIR,
        validation_alias="CERT_DIR",
        description="Directory holding the externally provisioned tls.crt, tls.key and ca.crt",
    )
    proxy_path: str = Field(
        default=DEFAULT_PROXY_PATH,
        validation_alias="PROXY_PATH",
        description="HTTP path the API server calls on the primary endpoint",
    )
    proxy_service_name: str = Field(
        default=DEFAULT_PROXY_SERVICE_NAME,
        validation_alias="PROXY_SERVICE_NAME",
        description="Service fronting the primary endpoint",
    )
    proxy_service_port: int = Field(
        default=DEFAULT_PROXY_SERVICE_PORT,
        validation_alias="PROXY_SERVICE_PORT",
        description="Service port fronting the primary endpoint",
    )

    # Generated cluster webhook configuration
    webhook_configuration_name: str = Field(
        default=DEFAULT_WEBHOOK_CONFIGURATION_NAME,
        validation_alias="WEBHOOK_CONFIGURATION_NAME",
        description="Name of the generated ValidatingWebhookConfiguration",
    )
    webhook_name: str = Field(
        default=DEFAULT_WEBHOOK_NAME,
        validation_alias="WEBHOOK_NAME",
        description="Fully qualified name of the single generated webhook entry",
    )
    primary_failure_policy: FailurePolicy = Field(
        default=FailurePolicy.FAIL,
        validation_alias="PRIMARY_FAILURE_POLICY",
        description="Failure policy the API server applies when the proxy itself is unreachable",
    )
    primary_timeout_seconds: int = Field(
        default=DEFAULT_PRIMARY_TIMEOUT_SECONDS,
        validation_alias="PRIMARY_TIMEOUT_SECONDS",
        description="Admission timeout the API server applies to the primary endpoint",
    )

    # Secondary webhooks
    webhook_call_timeout: float = Field(
        default=DEFAULT_WEBHOOK_CALL_TIMEOUT,
        validation_alias="WEBHOOK_CALL_TIMEOUT",
        description="Timeout in seconds for a single secondary webhook call",
    )
    secondary_webhooks_file: str = Field(
        default="",
        validation_alias="SECONDARY_WEBHOOKS_FILE",
        description="YAML file listing the secondary webhook endpoints",
    )

    # Single secondary endpoint from the environment (legacy deployment style)
    adm_service_name: str = Field(default="", validation_alias="ADM_SERVICE_NAME")
    adm_service_namespace: str = Field(
        default="", validation_alias="ADM_SERVICE_NAMESPACE"
    )
    adm_service_port: str = Field(default="", validation_alias="ADM_SERVICE_PORT")
    adm_service_endpoint: str = Field(
        default="", validation_alias="ADM_SERVICE_ENDPOINT"
    )
    adm_service_cabundle: str = Field(
        default="", validation_alias="ADM_SERVICE_CABUNDLE"
    )
    adm_service_failure_policy: str = Field(
        default="Fail", validation_alias="ADM_SERVICE_FAILURE_POLICY"
    )

    @property
    def legacy_endpoint_configured(self) -> bool:
        """Whether any of the ADM_SERVICE_* variables is set."""
        return any(
            (
                self.adm_service_name,
                self.adm_service_namespace,
                self.adm_service_port,
                self.adm_service_endpoint,
                self.adm_service_cabundle,
            )
        )


# Global settings instance - initialized once at module import
settings = Settings()
