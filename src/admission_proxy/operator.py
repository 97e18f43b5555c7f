#!/usr/bin/env python3
"""
Admission Proxy Operator - main entry point.

The operator fronts any number of secondary validating webhooks with one
statically registered admission endpoint:

- ProxyValidatingType resources declare which requests should be proxied;
  they are merged into one generated ValidatingWebhookConfiguration.
- The primary endpoint fans each intercepted request out to the matching
  secondary webhooks and merges their verdicts.

Usage:
    python -m admission_proxy.operator
    # Or through the installed console script:
    admission-proxy-operator

Environment Variables:
    SECONDARY_WEBHOOKS_FILE: YAML list of secondary webhook endpoints
    ADM_SERVICE_*: A single secondary endpoint (name, namespace, port, ...)
    CERT_DIR: Directory holding tls.crt, tls.key and optionally ca.crt
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import asyncio
import logging
import random
import sys

import kopf
from kubernetes import client
from kubernetes.client.rest import ApiException

from admission_proxy.constants import API_GROUP, API_VERSION, PROXY_TYPE_PLURAL
from admission_proxy.errors import ConfigurationError

# Importing the handler module registers its handlers with kopf
from admission_proxy.handlers import proxy_type  # noqa: F401
from admission_proxy.observability.logging import setup_structured_logging
from admission_proxy.observability.metrics import MetricsServer
from admission_proxy.services.aggregate import (
    AggregateStore,
    PrimaryWebhookTarget,
    build_aggregate,
)
from admission_proxy.services.dispatcher import AdmissionDispatcher
from admission_proxy.settings import Settings
from admission_proxy.settings import settings as operator_settings
from admission_proxy.utils.endpoint_config import load_secondary_endpoints
from admission_proxy.utils.kubernetes import api_error, get_kubernetes_client
from admission_proxy.utils.webhook_client import WebhookCaller
from admission_proxy.webhooks.server import ProxyServer, load_ca_bundle


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
        log_health_probes=operator_settings.log_health_probes,
    )


def build_primary_target(
    ca_bundle: bytes, config: Settings = operator_settings
) -> PrimaryWebhookTarget:
    """Identity of the generated webhook, pointing back at this operator."""
    return PrimaryWebhookTarget(
        configuration_name=config.webhook_configuration_name,
        webhook_name=config.webhook_name,
        service_name=config.proxy_service_name,
        service_namespace=config.operator_namespace,
        path=config.proxy_path,
        port=config.proxy_service_port,
        ca_bundle=ca_bundle,
        failure_policy=config.primary_failure_policy,
        timeout_seconds=config.primary_timeout_seconds,
    )


async def seed_aggregate(
    k8s_client: client.ApiClient, target: PrimaryWebhookTarget
) -> AggregateStore:
    """
    Rebuild the aggregate from the ProxyValidatingTypes already in the cluster.

    Requests arriving before the first reconcile are then routed with the
    rules the cluster webhook was last generated from. Resources that were
    never reconciled are included too, so their rules may be served before
    the first cycle publishes them to the cluster webhook.
    """
    custom_api = client.CustomObjectsApi(k8s_client)
    try:
        listing = await asyncio.to_thread(
            custom_api.list_cluster_custom_object,
            API_GROUP,
            API_VERSION,
            PROXY_TYPE_PLURAL,
        )
    except ApiException as e:
        raise api_error("list ProxyValidatingTypes", e).as_kopf_error() from e

    aggregate = build_aggregate(target, listing.get("items") or [])
    logging.info(f"Seeded aggregate with {len(aggregate)} existing rule sets")
    return AggregateStore(aggregate)


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup.

    Configures kopf, loads the Kubernetes client and the primary CA bundle,
    seeds the aggregate from existing resources and starts the admission
    and metrics servers.
    """
    logging.info("Starting Admission Proxy Operator...")
    settings.watching.reconnect_backoff = 1.0

    # Configure peering for leader election with random priority
    settings.peering.name = operator_settings.operator_name
    settings.peering.priority = random.randint(0, 32767)
    logging.info(
        f"Peering priority set to {settings.peering.priority} for leader election"
    )

    settings.execution.max_workers = 20

    memo.k8s_client = get_kubernetes_client()

    try:
        ca_bundle = load_ca_bundle(operator_settings.cert_dir)
    except ConfigurationError as e:
        logging.error(str(e))
        raise e.as_kopf_error() from e

    memo.target = build_primary_target(ca_bundle)
    memo.store = await seed_aggregate(memo.k8s_client, memo.target)

    dispatcher = AdmissionDispatcher(memo.store, memo.endpoints, memo.caller)
    memo.proxy_server = ProxyServer(
        dispatcher,
        proxy_path=operator_settings.proxy_path,
        port=operator_settings.webhook_port,
        host=operator_settings.webhook_host,
        cert_dir=operator_settings.cert_dir,
    )
    await memo.proxy_server.start()

    memo.metrics_server = None
    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port, host=operator_settings.metrics_host
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except Exception as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logging.warning("Continuing without metrics server")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the servers and close secondary webhook connections."""
    logging.info("Shutting down Admission Proxy Operator...")

    for server_name in ("proxy_server", "metrics_server"):
        server = getattr(memo, server_name, None)
        if server:
            await server.stop()

    caller = getattr(memo, "caller", None)
    if caller:
        await caller.aclose()


@kopf.on.probe(id="aggregate")
async def aggregate_probe(memo: kopf.Memo, **_) -> dict[str, int]:
    """Report the published aggregate on the kopf liveness endpoint."""
    store = getattr(memo, "store", None)
    if store is None:
        return {"rule_sets": 0, "revision": 0}
    return {"rule_sets": len(store.get()), "revision": store.revision}


def main() -> None:
    """
    Main entry point for the operator.

    This function:
    1. Configures logging
    2. Validates the secondary webhook configuration, exiting on errors
    3. Runs the kopf operator cluster-wide
    """
    configure_logging()

    result = load_secondary_endpoints(operator_settings)
    if not result.valid:
        for error in result.errors:
            logging.error(str(error))
        logging.error(
            f"Refusing to start: {len(result.errors)} secondary webhook configuration errors"
        )
        sys.exit(1)

    logging.info(
        f"Configured secondary webhooks: {', '.join(e.name for e in result.endpoints) or 'none'}"
    )

    memo = kopf.Memo(
        endpoints=result.endpoints,
        caller=WebhookCaller(timeout=operator_settings.webhook_call_timeout),
    )

    # The primary endpoint is served by ProxyServer, not kopf's admission server
    settings_obj = kopf.OperatorSettings()
    settings_obj.admission.server = None
    settings_obj.admission.managed = None

    try:
        kopf.run(
            clusterwide=True,
            liveness_endpoint="http://0.0.0.0:8080/healthz",
            settings=settings_obj,
            memo=memo,
        )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
