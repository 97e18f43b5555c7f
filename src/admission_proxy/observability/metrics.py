"""
Prometheus metrics for the admission proxy operator.

This module provides metrics for reconciliation of ProxyValidatingType
resources, the size of the published rule-set aggregate, and the verdicts
and latencies of proxied admission requests.
"""

import logging
import time
from contextlib import asynccontextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

# Metrics definitions
RECONCILIATION_TOTAL = Counter(
    "admission_proxy_reconciliation_total",
    "Total number of reconciliation attempts",
    ["resource_type", "name", "result"],
    registry=None,  # Will be set during initialization
)

RECONCILIATION_DURATION = Histogram(
    "admission_proxy_reconciliation_duration_seconds",
    "Time spent on reconciliation operations",
    ["resource_type", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "admission_proxy_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["resource_type", "error_type", "retryable"],
    registry=None,
)

AGGREGATE_RULE_SETS = Gauge(
    "admission_proxy_aggregate_rule_sets",
    "Number of rule sets in the published aggregate",
    [],
    registry=None,
)

AGGREGATE_RULES = Gauge(
    "admission_proxy_aggregate_rules",
    "Number of rules in the generated webhook configuration",
    [],
    registry=None,
)

AGGREGATE_PUBLICATIONS = Counter(
    "admission_proxy_aggregate_publications_total",
    "Total number of aggregate snapshots published",
    [],
    registry=None,
)

ADMISSION_REQUESTS = Counter(
    "admission_proxy_admission_requests_total",
    "Total number of proxied admission requests by verdict",
    ["operation", "verdict", "delegated"],
    registry=None,
)

ADMISSION_DURATION = Histogram(
    "admission_proxy_admission_duration_seconds",
    "Time spent answering a proxied admission request",
    ["delegated"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=None,
)

WEBHOOK_CALLS = Counter(
    "admission_proxy_secondary_webhook_calls_total",
    "Total number of secondary webhook calls by outcome",
    ["endpoint", "outcome"],
    registry=None,
)

WEBHOOK_CALL_DURATION = Histogram(
    "admission_proxy_secondary_webhook_call_duration_seconds",
    "Latency of secondary webhook calls",
    ["endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()

        for metric in [
            RECONCILIATION_TOTAL,
            RECONCILIATION_DURATION,
            RECONCILIATION_ERRORS,
            AGGREGATE_RULE_SETS,
            AGGREGATE_RULES,
            AGGREGATE_PUBLICATIONS,
            ADMISSION_REQUESTS,
            ADMISSION_DURATION,
            WEBHOOK_CALLS,
            WEBHOOK_CALL_DURATION,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the admission proxy."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(
        self,
        resource_type: str,
        name: str,
        operation: str = "reconcile",
    ):
        """
        Context manager to track reconciliation operations.

        Args:
            resource_type: Type of resource being reconciled
            name: Name of the resource
            operation: Type of operation being performed
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"

            error_type = type(e).__name__
            retryable = "true" if getattr(e, "retryable", False) else "false"

            RECONCILIATION_ERRORS.labels(
                resource_type=resource_type,
                error_type=error_type,
                retryable=retryable,
            ).inc()

            raise
        finally:
            duration = time.time() - start_time

            RECONCILIATION_TOTAL.labels(
                resource_type=resource_type, name=name, result=result
            ).inc()

            RECONCILIATION_DURATION.labels(
                resource_type=resource_type, operation=operation
            ).observe(duration)

    def update_aggregate(self, rule_sets: int, rules: int) -> None:
        """
        Record the size of a freshly published aggregate.

        Args:
            rule_sets: Number of declarants in the aggregate
            rules: Number of rules rendered into the webhook configuration
        """
        AGGREGATE_RULE_SETS.set(rule_sets)
        AGGREGATE_RULES.set(rules)
        AGGREGATE_PUBLICATIONS.inc()

    def record_admission(
        self, operation: str, allowed: bool, delegated: bool, duration: float
    ) -> None:
        """
        Record the merged verdict of one admission request.

        Args:
            operation: Admission operation (CREATE, UPDATE, ...)
            allowed: Whether the request was admitted
            delegated: Whether any secondary webhook was consulted
            duration: Time taken to produce the verdict
        """
        delegated_label = "true" if delegated else "false"
        ADMISSION_REQUESTS.labels(
            operation=operation,
            verdict="allow" if allowed else "deny",
            delegated=delegated_label,
        ).inc()
        ADMISSION_DURATION.labels(delegated=delegated_label).observe(duration)

    def record_webhook_call(self, endpoint: str, outcome: str, duration: float) -> None:
        """
        Record one secondary webhook call.

        Args:
            endpoint: Name of the secondary endpoint
            outcome: allowed, denied, transport_error or protocol_error
            duration: Call latency in seconds
        """
        WEBHOOK_CALLS.labels(endpoint=endpoint, outcome=outcome).inc()
        WEBHOOK_CALL_DURATION.labels(endpoint=endpoint).observe(duration)


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )
        return Response(body=metrics_data, content_type=CONTENT_TYPE_LATEST)

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
