"""
Admission dispatcher.

Routes one intercepted AdmissionReview to the secondary webhooks whose rule
sets match it, waits for every call, and merges the outcomes into a single
verdict. The dispatcher only ever reads the published aggregate snapshot.
"""

import asyncio
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..models.admission import AdmissionReview, build_review_response
from ..models.endpoint import SecondaryWebhookEndpoint
from ..observability.logging import OperatorLogger, set_correlation_id
from ..observability.metrics import metrics_collector
from ..utils.webhook_client import CallOutcome, HeaderPairs, WebhookCaller
from .aggregate import AggregateStore, ProxyTypeData


@dataclass(frozen=True)
class AdmissionVerdict:
    """Merged answer for one admission request."""

    uid: str
    allowed: bool
    message: str | None = None

    def to_admission_review(self, api_version: str) -> dict[str, Any]:
        return build_review_response(self.uid, self.allowed, self.message, api_version)


def merge_outcomes(uid: str, outcomes: Sequence[CallOutcome]) -> AdmissionVerdict:
    """
    Combine endpoint-ordered outcomes into one verdict.

    Any deny wins; the message of the first denying outcome is surfaced and
    later denials are not combined into it.
    """
    for outcome in outcomes:
        if not outcome.allowed:
            return AdmissionVerdict(uid=uid, allowed=False, message=outcome.message)
    return AdmissionVerdict(uid=uid, allowed=True)


class AdmissionDispatcher:
    """Fans admission requests out to the matching secondary webhooks."""

    def __init__(
        self,
        store: AggregateStore,
        endpoints: Iterable[SecondaryWebhookEndpoint],
        caller: WebhookCaller,
    ):
        self.store = store
        self.endpoints = list(endpoints)
        self.caller = caller
        self.logger = OperatorLogger(self.__class__.__name__)
        self._by_name = {endpoint.name: endpoint for endpoint in self.endpoints}

    def resolve_endpoints(
        self, review: AdmissionReview, snapshot: ProxyTypeData | None = None
    ) -> list[SecondaryWebhookEndpoint]:
        """
        Endpoints the request must be sent to, in configuration order.

        A matching rule set routes to the endpoints it names, or to every
        configured endpoint when it names none. Unknown names are skipped.
        """
        snapshot = snapshot if snapshot is not None else self.store.get()
        request = review.request
        matched = snapshot.matching_rule_sets(
            request.resource.group,
            request.resource.version,
            request.resource.resource,
            request.operation,
            request.sub_resource,
        )

        wanted: set[str] = set()
        for rule_set in matched:
            if not rule_set.endpoints:
                wanted.update(self._by_name)
                continue
            for name in rule_set.endpoints:
                if name in self._by_name:
                    wanted.add(name)
                else:
                    self.logger.warning(
                        f"ProxyValidatingType {rule_set.name} references unknown "
                        f"secondary webhook {name}",
                        resource_name=rule_set.name,
                        endpoint=name,
                    )

        return [endpoint for endpoint in self.endpoints if endpoint.name in wanted]

    async def dispatch(
        self,
        review: AdmissionReview,
        raw_body: bytes,
        headers: HeaderPairs,
    ) -> AdmissionVerdict:
        """
        Produce the verdict for one admission request.

        Every matched endpoint is called concurrently and all calls are
        awaited, even after a denial. Cancelling the caller does not cancel
        calls already in flight.

        Args:
            review: Parsed inbound review
            raw_body: Inbound body, forwarded unchanged
            headers: Inbound headers

        Returns:
            The merged verdict, reusing the request uid
        """
        request = review.request
        set_correlation_id(request.uid)
        start_time = time.monotonic()

        endpoints = self.resolve_endpoints(review)
        if not endpoints:
            verdict = AdmissionVerdict(uid=request.uid, allowed=True)
            outcomes: list[CallOutcome] = []
        else:
            headers = list(headers.items() if isinstance(headers, Mapping) else headers)
            fan_out = asyncio.gather(
                *(self.caller.call(endpoint, raw_body, headers) for endpoint in endpoints)
            )
            outcomes = list(await asyncio.shield(fan_out))
            verdict = merge_outcomes(request.uid, outcomes)

        duration = time.monotonic() - start_time
        metrics_collector.record_admission(
            operation=request.operation,
            allowed=verdict.allowed,
            delegated=bool(endpoints),
            duration=duration,
        )
        self.logger.log_admission_decision(
            admission_uid=request.uid,
            allowed=verdict.allowed,
            matched_endpoints=[outcome.endpoint for outcome in outcomes],
            message=verdict.message,
            duration=duration,
        )
        return verdict
