"""
Unit tests for the ProxyValidatingType kopf handlers.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import kopf
import pytest

from admission_proxy.constants import STATUS_REQUEUE_DELAY
from admission_proxy.handlers.proxy_type import (
    delete_proxy_type,
    ensure_proxy_type,
    update_proxy_type,
)
from admission_proxy.services.proxy_type_reconciler import ReconcileResult


@pytest.fixture
def memo(target):
    memo = kopf.Memo()
    memo.store = MagicMock()
    memo.target = target
    memo.k8s_client = MagicMock()
    return memo


@pytest.fixture
def reconciler():
    with patch(
        "admission_proxy.handlers.proxy_type.ProxyTypeReconciler"
    ) as reconciler_class:
        instance = reconciler_class.return_value
        instance.reconcile = AsyncMock(return_value=ReconcileResult(revision=1))
        yield reconciler_class


class TestHandlers:
    @pytest.mark.asyncio
    async def test_ensure_runs_cycle_with_memo_state(self, memo, reconciler):
        await ensure_proxy_type(name="deployments", memo=memo, uid="uid-1")

        reconciler.assert_called_once_with(
            store=memo.store, target=memo.target, k8s_client=memo.k8s_client
        )
        reconciler.return_value.reconcile.assert_awaited_once_with(
            name="deployments", uid="uid-1"
        )

    @pytest.mark.asyncio
    async def test_update_runs_cycle(self, memo, reconciler):
        await update_proxy_type(name="deployments", diff=[], memo=memo)

        reconciler.return_value.reconcile.assert_awaited_once_with(name="deployments")

    @pytest.mark.asyncio
    async def test_delete_runs_cycle(self, memo, reconciler):
        await delete_proxy_type(name="deployments", memo=memo)

        reconciler.return_value.reconcile.assert_awaited_once_with(name="deployments")

    @pytest.mark.asyncio
    async def test_requeue_becomes_temporary_error(self, memo, reconciler):
        reconciler.return_value.reconcile.return_value = ReconcileResult(
            revision=2, requeue=True
        )

        with pytest.raises(kopf.TemporaryError) as exc_info:
            await ensure_proxy_type(name="deployments", memo=memo)

        assert exc_info.value.delay == STATUS_REQUEUE_DELAY

    @pytest.mark.asyncio
    async def test_reconcile_errors_propagate(self, memo, reconciler):
        reconciler.return_value.reconcile.side_effect = kopf.TemporaryError(
            "conflict", delay=1
        )

        with pytest.raises(kopf.TemporaryError):
            await update_proxy_type(name="deployments", diff=[], memo=memo)
