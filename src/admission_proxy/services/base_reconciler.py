"""
Base reconciler class providing common patterns for resource reconciliation.

This module defines the BaseReconciler class that wraps a reconcile cycle
with correlation-id logging, metrics tracking and conversion of operator
errors into kopf retry semantics.
"""

import time
from abc import ABC, abstractmethod
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import OperatorError, TemporaryError
from ..observability.logging import OperatorLogger
from ..utils.kubernetes import api_error


class BaseReconciler(ABC):
    """
    Base class for resource reconcilers.

    Provides common patterns for:
    - Error handling and retry logic
    - Kubernetes client management
    - Reconciliation logging and metrics
    """

    resource_type = "resource"

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize base reconciler.

        Args:
            k8s_client: Kubernetes API client, will be created if not provided
        """
        self.k8s_client = k8s_client
        self.logger = OperatorLogger(self.__class__.__name__)

    @property
    def kubernetes_client(self) -> client.ApiClient:
        """Get or create Kubernetes API client."""
        if self.k8s_client is None:
            from ..utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    async def reconcile(self, name: str, **kwargs) -> Any:
        """
        Main reconciliation entry point with metrics tracking.

        Args:
            name: Resource name
            **kwargs: Additional handler arguments

        Returns:
            Whatever ``do_reconcile`` returns

        Raises:
            kopf.TemporaryError: For retryable failures
            kopf.PermanentError: For failures that need a spec change
        """
        from ..observability.metrics import metrics_collector

        start_time = time.time()

        self.logger.log_reconciliation_start(
            resource_type=self.resource_type, resource_name=name
        )

        async with metrics_collector.track_reconciliation(
            resource_type=self.resource_type, name=name, operation="reconcile"
        ):
            try:
                result = await self.do_reconcile(name, **kwargs)

            except OperatorError as e:
                self.logger.log_reconciliation_error(
                    resource_type=self.resource_type,
                    resource_name=name,
                    error=e,
                    duration=time.time() - start_time,
                )
                raise e.as_kopf_error() from e

            except ApiException as e:
                error = api_error(f"reconcile {self.resource_type} {name}", e)
                self.logger.log_reconciliation_error(
                    resource_type=self.resource_type,
                    resource_name=name,
                    error=error,
                    duration=time.time() - start_time,
                )
                raise error.as_kopf_error() from e

            except Exception as e:
                # Wrap unexpected errors as temporary to allow retry
                error = TemporaryError(
                    f"Unexpected error during reconciliation: {str(e)}"
                )
                self.logger.log_reconciliation_error(
                    resource_type=self.resource_type,
                    resource_name=name,
                    error=error,
                    duration=time.time() - start_time,
                )
                raise error.as_kopf_error() from e

            self.logger.log_reconciliation_success(
                resource_type=self.resource_type,
                resource_name=name,
                duration=time.time() - start_time,
            )
            return result

    @abstractmethod
    async def do_reconcile(self, name: str, **kwargs) -> Any:
        """
        Perform one reconcile cycle for the named resource.

        Args:
            name: Resource name
            **kwargs: Additional handler arguments
        """
        raise NotImplementedError
