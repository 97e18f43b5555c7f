"""Shared pytest fixtures for admission proxy unit tests."""

import pytest

from admission_proxy.services.aggregate import PrimaryWebhookTarget
from proxy_fixtures import read_ca


@pytest.fixture
def target() -> PrimaryWebhookTarget:
    return PrimaryWebhookTarget(
        configuration_name="admission-proxy",
        webhook_name="proxy.admissionproxy.dev",
        service_name="admission-proxy",
        service_namespace="admission-proxy",
        path="/proxy",
        port=443,
        ca_bundle=read_ca("secondary-ca-one").encode(),
    )
