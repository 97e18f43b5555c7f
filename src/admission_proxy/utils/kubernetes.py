"""
Kubernetes utilities for the admission proxy operator.

This module provides client loading and the typed API accessors used by
the reconciler to read and write ProxyValidatingType resources and the
generated ValidatingWebhookConfiguration.
"""

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from admission_proxy.constants import CONFLICT_RETRY_DELAY, DEFAULT_RETRY_DELAY
from admission_proxy.errors import KubernetesAPIError

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Tries the in-cluster configuration first and falls back to the local
    kubeconfig for development.

    Returns:
        Configured Kubernetes API client
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


def to_dict(api_client: client.ApiClient, obj: Any) -> dict[str, Any] | None:
    """Convert a typed kubernetes model into its camelCase wire dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj
    return api_client.sanitize_for_serialization(obj)


def api_error(action: str, e: ApiException) -> KubernetesAPIError:
    """
    Translate an ApiException into an operator error.

    A write conflict (409) is retried quickly: the next cycle observes the
    new resourceVersion and re-derives its writes.
    """
    delay = CONFLICT_RETRY_DELAY if e.status == 409 else DEFAULT_RETRY_DELAY
    return KubernetesAPIError(
        f"Failed to {action}: HTTP {e.status}",
        reason=e.reason,
        status=e.status,
        delay=delay,
        cause=e,
    )
