"""
Observability package - logging and metrics for the admission proxy.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsCollector, MetricsServer, metrics_collector

__all__ = [
    "MetricsCollector",
    "MetricsServer",
    "OperatorLogger",
    "metrics_collector",
    "setup_structured_logging",
]
