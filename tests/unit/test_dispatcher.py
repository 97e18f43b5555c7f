"""
Unit tests for the admission dispatcher: endpoint resolution, fan-out and
verdict merging.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from admission_proxy.errors import DenialError, TransportError
from admission_proxy.models.admission import AdmissionReview
from admission_proxy.models.endpoint import FailurePolicy
from admission_proxy.services.aggregate import AggregateStore, ProxyTypeData, RuleSet
from admission_proxy.services.dispatcher import AdmissionDispatcher, merge_outcomes
from admission_proxy.utils.webhook_client import CallOutcome, WebhookCaller
from proxy_fixtures import make_endpoint, make_proxy_type, make_rule


def make_review(
    group="apps", version="v1", resource="deployments", operation="CREATE", uid="req-1"
) -> dict:
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": group, "version": version, "kind": "Deployment"},
            "resource": {"group": group, "version": version, "resource": resource},
            "operation": operation,
            "name": "web",
            "namespace": "default",
            "object": {"metadata": {"name": "web"}},
        },
    }


def store_with(target, *resources) -> AggregateStore:
    data = ProxyTypeData(target)
    for resource in resources:
        data = data.add(RuleSet.from_resource(resource))
    return AggregateStore(data)


def allow(endpoint):
    return CallOutcome(endpoint=endpoint.name, allowed=True)


def deny(endpoint, message):
    return CallOutcome(
        endpoint=endpoint.name,
        allowed=False,
        error=DenialError(endpoint.name, message),
    )


@pytest.fixture
def review():
    return AdmissionReview.model_validate(make_review())


class TestResolveEndpoints:
    def test_unnamed_rule_set_routes_to_all(self, target, review):
        endpoints = [make_endpoint("one"), make_endpoint("two")]
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()), endpoints, AsyncMock()
        )

        assert [e.name for e in dispatcher.resolve_endpoints(review)] == ["one", "two"]

    def test_named_endpoints_in_configuration_order(self, target, review):
        endpoints = [make_endpoint("one"), make_endpoint("two"), make_endpoint("three")]
        store = store_with(
            target,
            make_proxy_type(name="a", webhooks=["three"]),
            make_proxy_type(name="b", webhooks=["one", "three"]),
        )
        dispatcher = AdmissionDispatcher(store, endpoints, AsyncMock())

        assert [e.name for e in dispatcher.resolve_endpoints(review)] == ["one", "three"]

    def test_unknown_endpoint_skipped(self, target, review):
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type(webhooks=["missing"])),
            [make_endpoint("one")],
            AsyncMock(),
        )

        assert dispatcher.resolve_endpoints(review) == []

    def test_non_matching_request(self, target):
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type(rules=[make_rule(operations=["DELETE"])])),
            [make_endpoint("one")],
            AsyncMock(),
        )

        assert dispatcher.resolve_endpoints(AdmissionReview.model_validate(make_review())) == []


class TestMergeOutcomes:
    def test_all_allowed(self):
        one, two = make_endpoint("one"), make_endpoint("two")

        verdict = merge_outcomes("req-1", [allow(one), allow(two)])

        assert verdict.allowed is True
        assert verdict.uid == "req-1"
        assert verdict.message is None

    def test_first_denial_message_wins(self):
        one, two, three = make_endpoint("one"), make_endpoint("two"), make_endpoint("three")

        verdict = merge_outcomes(
            "req-1", [allow(one), deny(two, "no root"), deny(three, "no latest tag")]
        )

        assert verdict.allowed is False
        assert "no root" in verdict.message
        assert "no latest tag" not in verdict.message


class TestDispatch:
    @pytest.mark.asyncio
    async def test_zero_matched_endpoints_allows(self, target, review):
        caller = AsyncMock()
        dispatcher = AdmissionDispatcher(
            AggregateStore(ProxyTypeData(target)), [make_endpoint("one")], caller
        )

        verdict = await dispatcher.dispatch(review, b"{}", {})

        assert verdict.allowed is True
        assert verdict.uid == "req-1"
        caller.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_deny_and_allow_merge_to_deny(self, target, review):
        one, two = make_endpoint("one"), make_endpoint("two")
        caller = AsyncMock()
        caller.call.side_effect = lambda endpoint, body, headers: (
            deny(endpoint, "rejected") if endpoint.name == "one" else allow(endpoint)
        )
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()), [one, two], caller
        )

        verdict = await dispatcher.dispatch(review, b"{}", {"X-Trace": "1"})

        assert verdict.allowed is False
        assert "rejected" in verdict.message
        assert caller.call.await_count == 2

    @pytest.mark.asyncio
    async def test_waits_for_every_call(self, target, review):
        one, two = make_endpoint("one"), make_endpoint("two")
        finished = []

        async def call(endpoint, body, headers):
            if endpoint.name == "one":
                return deny(endpoint, "fast denial")
            await asyncio.sleep(0.01)
            finished.append(endpoint.name)
            return allow(endpoint)

        caller = AsyncMock()
        caller.call.side_effect = call
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()), [one, two], caller
        )

        verdict = await dispatcher.dispatch(review, b"{}", {})

        assert verdict.allowed is False
        assert finished == ["two"]

    @pytest.mark.asyncio
    async def test_response_envelope(self, target, review):
        caller = AsyncMock()
        caller.call.side_effect = lambda endpoint, body, headers: deny(endpoint, "nope")
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()), [make_endpoint("one")], caller
        )

        verdict = await dispatcher.dispatch(review, b"{}", {})
        envelope = verdict.to_admission_review("admission.k8s.io/v1beta1")

        assert envelope["apiVersion"] == "admission.k8s.io/v1beta1"
        assert envelope["kind"] == "AdmissionReview"
        assert envelope["response"]["uid"] == "req-1"
        assert envelope["response"]["allowed"] is False
        assert envelope["response"]["status"]["code"] == 403
        assert "nope" in envelope["response"]["status"]["message"]


class TestFailurePolicyThroughCaller:
    """Dispatch against a real WebhookCaller whose transport always fails."""

    @staticmethod
    def failing_caller() -> WebhookCaller:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        return WebhookCaller(timeout=1.0, transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_fail_policy_transport_error_denies(self, target, review):
        caller = self.failing_caller()
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()),
            [make_endpoint("one", failure_policy=FailurePolicy.FAIL)],
            caller,
        )

        verdict = await dispatcher.dispatch(
            review, json.dumps(make_review()).encode(), {}
        )
        await caller.aclose()

        assert verdict.allowed is False
        assert "one" in verdict.message

    @pytest.mark.asyncio
    async def test_ignore_policy_transport_error_allows(self, target, review):
        caller = self.failing_caller()
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()),
            [make_endpoint("one", failure_policy=FailurePolicy.IGNORE)],
            caller,
        )

        verdict = await dispatcher.dispatch(
            review, json.dumps(make_review()).encode(), {}
        )
        await caller.aclose()

        assert verdict.allowed is True


def test_transport_error_message_names_endpoint():
    error = TransportError("policy", "connection refused")

    assert str(error) == "secondary webhook policy failed: connection refused"


class TestUnsendableRequest:
    @pytest.mark.asyncio
    async def test_ignore_endpoint_cannot_block_on_bad_header(self, target, review):
        caller = WebhookCaller(
            timeout=1.0,
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        dispatcher = AdmissionDispatcher(
            store_with(target, make_proxy_type()),
            [make_endpoint("audit", failure_policy=FailurePolicy.IGNORE)],
            caller,
        )

        verdict = await dispatcher.dispatch(
            review, json.dumps(make_review()).encode(), [("x-user", "josé")]
        )
        await caller.aclose()

        assert verdict.allowed is True
        assert verdict.uid == "req-1"
