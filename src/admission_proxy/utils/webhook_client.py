"""
HTTP client for secondary validating webhooks.

Each secondary endpoint gets its own pooled ``httpx.AsyncClient`` whose TLS
context trusts only that endpoint's CA bundle. The inbound AdmissionReview
body is forwarded byte for byte; the answer is classified into a typed
outcome and folded through the endpoint's failure policy.
"""

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

import httpx
from pydantic import ValidationError as PydanticValidationError

from admission_proxy.constants import DEFAULT_WEBHOOK_CALL_TIMEOUT, HOP_BY_HOP_HEADERS
from admission_proxy.errors import (
    DenialError,
    ProtocolError,
    TransportError,
    WebhookCallError,
)
from admission_proxy.models.admission import AdmissionReviewResponse
from admission_proxy.models.endpoint import FailurePolicy, SecondaryWebhookEndpoint
from admission_proxy.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallOutcome:
    """Result of one secondary webhook call after the failure policy."""

    endpoint: str
    allowed: bool
    error: WebhookCallError | None = None

    @property
    def message(self) -> str | None:
        """Denial message surfaced to the API server, if this outcome denies."""
        if self.allowed or self.error is None:
            return None
        return str(self.error)


HeaderPairs = Mapping[str, str] | Iterable[tuple[str | bytes, str | bytes]]


def _header_name(name: str | bytes) -> str:
    if isinstance(name, bytes):
        return name.decode("latin-1").lower()
    return name.lower()


def forward_headers(headers: HeaderPairs) -> list[tuple[str | bytes, str | bytes]]:
    """Copy inbound headers, dropping hop-by-hop and length/host headers.

    Repeated headers are preserved in order. Raw byte pairs (as read off the
    wire) are passed through undecoded.
    """
    pairs = headers.items() if isinstance(headers, Mapping) else headers
    return [
        (name, value)
        for name, value in pairs
        if _header_name(name) not in HOP_BY_HOP_HEADERS
    ]


def apply_failure_policy(
    endpoint: SecondaryWebhookEndpoint, error: WebhookCallError | None
) -> CallOutcome:
    """Fold a call error into an allow or deny outcome.

    ``Fail`` turns any error, including an explicit denial, into a deny.
    ``Ignore`` admits the request regardless.
    """
    if error is None:
        return CallOutcome(endpoint=endpoint.name, allowed=True)

    if endpoint.failure_policy == FailurePolicy.IGNORE:
        logger.warning(
            f"Ignoring outcome of {endpoint.name} per failure policy: {error}",
            extra={"endpoint": endpoint.name, "outcome": type(error).__name__},
        )
        return CallOutcome(endpoint=endpoint.name, allowed=True, error=error)

    return CallOutcome(endpoint=endpoint.name, allowed=False, error=error)


class WebhookCaller:
    """Calls secondary webhooks over mutually independent TLS clients."""

    def __init__(
        self,
        timeout: float = DEFAULT_WEBHOOK_CALL_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the caller.

        Args:
            timeout: Upper bound in seconds for one complete call
            transport: Optional transport override, used by tests
        """
        self.timeout = timeout
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}

    def _get_client(self, endpoint: SecondaryWebhookEndpoint) -> httpx.AsyncClient:
        client = self._clients.get(endpoint.name)
        if client is not None and not client.is_closed:
            return client

        client = httpx.AsyncClient(
            verify=endpoint.ssl_context(),
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
            transport=self._transport,
        )
        self._clients[endpoint.name] = client
        logger.debug(f"Created httpx client for secondary webhook {endpoint.name}")
        return client

    async def call(
        self,
        endpoint: SecondaryWebhookEndpoint,
        raw_body: bytes,
        headers: HeaderPairs,
    ) -> CallOutcome:
        """
        Forward one admission review to a secondary webhook.

        Never raises for call failures; every failure is returned as part of
        the outcome.

        Args:
            endpoint: Target endpoint
            raw_body: Inbound AdmissionReview bytes, forwarded unchanged
            headers: Inbound request headers

        Returns:
            The outcome after applying the endpoint's failure policy
        """
        start_time = time.monotonic()
        error: WebhookCallError | None = None
        try:
            await self._invoke(endpoint, raw_body, headers)
            result = "allowed"
        except DenialError as e:
            error = e
            result = "denied"
        except ProtocolError as e:
            error = e
            result = "protocol_error"
        except TransportError as e:
            error = e
            result = "transport_error"

        duration = time.monotonic() - start_time
        metrics_collector.record_webhook_call(endpoint.name, result, duration)
        logger.debug(
            f"Secondary webhook {endpoint.name} answered {result} in {duration:.3f}s",
            extra={"endpoint": endpoint.name, "outcome": result, "duration": duration},
        )
        return apply_failure_policy(endpoint, error)

    async def _invoke(
        self,
        endpoint: SecondaryWebhookEndpoint,
        raw_body: bytes,
        headers: HeaderPairs,
    ) -> None:
        client = self._get_client(endpoint)
        try:
            async with asyncio.timeout(self.timeout):
                response = await client.post(
                    endpoint.url, content=raw_body, headers=forward_headers(headers)
                )
        except TimeoutError as e:
            raise TransportError(
                endpoint.name, f"no answer within {self.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(endpoint.name, f"{type(e).__name__}: {e}") from e
        except Exception as e:
            # Request construction errors (e.g. unencodable header values)
            raise TransportError(
                endpoint.name, f"request could not be sent: {type(e).__name__}: {e}"
            ) from e

        if not response.is_success:
            raise ProtocolError(
                endpoint.name, f"unexpected HTTP status {response.status_code}"
            )

        try:
            review = AdmissionReviewResponse.model_validate_json(response.content)
        except PydanticValidationError as e:
            raise ProtocolError(
                endpoint.name, f"unreadable AdmissionReview: {e.error_count()} errors"
            ) from e

        if not review.response.allowed:
            status = review.response.status
            raise DenialError(
                endpoint.name, (status.message if status else "") or "no reason given"
            )

    async def aclose(self) -> None:
        """Close every pooled client."""
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()
