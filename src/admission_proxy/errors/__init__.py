"""
Error handling module for the admission proxy operator.

This module provides a comprehensive error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    ConfigurationError,
    KubernetesAPIError,
    OperatorError,
    ReconciliationError,
    TemporaryError,
    ValidationError,
)
from .webhook_errors import (
    DenialError,
    ProtocolError,
    TransportError,
    WebhookCallError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "TemporaryError",
    "ReconciliationError",
    "KubernetesAPIError",
    "ConfigurationError",
    "WebhookCallError",
    "TransportError",
    "ProtocolError",
    "DenialError",
]
