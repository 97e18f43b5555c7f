"""
Unit tests for the secondary webhook caller.

Secondary webhooks are simulated with ``httpx.MockTransport`` so requests
never leave the process.
"""

import asyncio
import json

import httpx
import pytest

from admission_proxy.errors import DenialError, ProtocolError, TransportError
from admission_proxy.models.endpoint import FailurePolicy
from admission_proxy.utils.webhook_client import (
    WebhookCaller,
    apply_failure_policy,
    forward_headers,
)
from proxy_fixtures import make_endpoint

RAW_REVIEW = b'{"apiVersion":"admission.k8s.io/v1","kind":"AdmissionReview","request":{"uid":"req-1"}}'


def review_response(allowed: bool, message: str = "") -> dict:
    response = {"uid": "req-1", "allowed": allowed}
    if message:
        response["status"] = {"message": message, "code": 403}
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": response,
    }


def caller_answering(handler, timeout: float = 1.0) -> WebhookCaller:
    return WebhookCaller(timeout=timeout, transport=httpx.MockTransport(handler))


class TestForwardHeaders:
    def test_drops_hop_by_hop_and_length_headers(self):
        headers = {
            "Host": "admission-proxy.svc",
            "Content-Length": "120",
            "Connection": "keep-alive",
            "Content-Type": "application/json",
            "X-Request-Id": "abc",
        }

        assert forward_headers(headers) == [
            ("Content-Type", "application/json"),
            ("X-Request-Id", "abc"),
        ]

    def test_keeps_repeated_headers(self):
        pairs = [("X-Tag", "a"), ("X-Tag", "b"), ("Transfer-Encoding", "chunked")]

        assert forward_headers(pairs) == [("X-Tag", "a"), ("X-Tag", "b")]

    def test_raw_byte_pairs_pass_through_undecoded(self):
        user = "jos\u00e9".encode()
        pairs = [(b"Host", b"admission-proxy.svc"), (b"X-User", user)]

        assert forward_headers(pairs) == [(b"X-User", user)]


class TestCall:
    @pytest.mark.asyncio
    async def test_forwards_body_and_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = (request.url.scheme, request.url.host, request.url.path)
            seen["body"] = request.content
            seen["trace"] = request.headers.get("x-trace")
            return httpx.Response(200, json=review_response(True))

        caller = caller_answering(handler)
        outcome = await caller.call(
            make_endpoint("policy"),
            RAW_REVIEW,
            {"X-Trace": "t-1", "Content-Type": "application/json"},
        )
        await caller.aclose()

        assert outcome.allowed is True
        assert outcome.error is None
        assert seen["url"] == ("https", "policy-svc.webhooks.svc", "/validate")
        assert seen["body"] == RAW_REVIEW
        assert seen["trace"] == "t-1"

    @pytest.mark.asyncio
    async def test_denial_carries_message(self):
        caller = caller_answering(
            lambda request: httpx.Response(
                200, json=review_response(False, "privileged pods are not allowed")
            )
        )

        outcome = await caller.call(make_endpoint("policy"), RAW_REVIEW, {})
        await caller.aclose()

        assert outcome.allowed is False
        assert isinstance(outcome.error, DenialError)
        assert "privileged pods are not allowed" in outcome.message
        assert "policy" in outcome.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json={"apiVersion": "admission.k8s.io/v1"}),
            httpx.Response(200, json={"response": {"uid": "req-1"}}),
            httpx.Response(500, json=review_response(True)),
        ],
        ids=["not-json", "no-response", "no-allowed", "server-error"],
    )
    async def test_unusable_answer_is_protocol_error(self, response):
        caller = caller_answering(lambda request: response)

        outcome = await caller.call(make_endpoint("policy"), RAW_REVIEW, {})
        await caller.aclose()

        assert outcome.allowed is False
        assert isinstance(outcome.error, ProtocolError)

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        caller = caller_answering(handler)
        outcome = await caller.call(make_endpoint("policy"), RAW_REVIEW, {})
        await caller.aclose()

        assert outcome.allowed is False
        assert isinstance(outcome.error, TransportError)

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json=review_response(True))

        caller = caller_answering(handler, timeout=0.05)
        outcome = await caller.call(make_endpoint("policy"), RAW_REVIEW, {})
        await caller.aclose()

        assert outcome.allowed is False
        assert isinstance(outcome.error, TransportError)

    @pytest.mark.asyncio
    async def test_non_ascii_header_bytes_forwarded(self):
        seen = {}
        user = "jos\u00e9".encode()

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers.raw
            return httpx.Response(200, json=review_response(True))

        caller = caller_answering(handler)
        outcome = await caller.call(
            make_endpoint("policy"), RAW_REVIEW, [(b"x-user", user)]
        )
        await caller.aclose()

        assert outcome.allowed is True
        assert (b"x-user", user) in seen["headers"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure_policy,allowed",
        [(FailurePolicy.IGNORE, True), (FailurePolicy.FAIL, False)],
    )
    async def test_unsendable_request_folds_through_policy(self, failure_policy, allowed):
        caller = caller_answering(
            lambda request: httpx.Response(200, json=review_response(True))
        )

        outcome = await caller.call(
            make_endpoint("audit", failure_policy=failure_policy),
            RAW_REVIEW,
            [("x-user", "jos\u00e9")],
        )
        await caller.aclose()

        assert outcome.allowed is allowed
        assert isinstance(outcome.error, TransportError)

    @pytest.mark.asyncio
    async def test_ignore_policy_admits_denial(self):
        caller = caller_answering(
            lambda request: httpx.Response(200, json=review_response(False, "nope"))
        )

        outcome = await caller.call(
            make_endpoint("audit", failure_policy=FailurePolicy.IGNORE), RAW_REVIEW, {}
        )
        await caller.aclose()

        assert outcome.allowed is True
        assert isinstance(outcome.error, DenialError)
        assert outcome.message is None

    @pytest.mark.asyncio
    async def test_v1beta1_answer_accepted(self):
        body = review_response(True)
        body["apiVersion"] = "admission.k8s.io/v1beta1"
        caller = caller_answering(
            lambda request: httpx.Response(200, content=json.dumps(body).encode())
        )

        outcome = await caller.call(make_endpoint("policy"), RAW_REVIEW, {})
        await caller.aclose()

        assert outcome.allowed is True


class TestClients:
    @pytest.mark.asyncio
    async def test_one_client_per_endpoint(self):
        caller = WebhookCaller()
        one = make_endpoint("one", ca="secondary-ca-one")
        two = make_endpoint("two", ca="secondary-ca-two")

        assert caller._get_client(one) is caller._get_client(one)
        assert caller._get_client(one) is not caller._get_client(two)

        await caller.aclose()
        assert caller._clients == {}


class TestApplyFailurePolicy:
    def test_success_allows(self):
        outcome = apply_failure_policy(make_endpoint("policy"), None)

        assert outcome.allowed is True
        assert outcome.message is None

    def test_fail_policy_denies_with_error_message(self):
        error = TransportError("policy", "connection refused")

        outcome = apply_failure_policy(make_endpoint("policy"), error)

        assert outcome.allowed is False
        assert outcome.message == "secondary webhook policy failed: connection refused"

    def test_ignore_policy_allows(self):
        error = ProtocolError("audit", "unexpected HTTP status 502")

        outcome = apply_failure_policy(
            make_endpoint("audit", failure_policy=FailurePolicy.IGNORE), error
        )

        assert outcome.allowed is True
        assert outcome.error is error
