"""
ProxyValidatingType handlers - feed resource events into the reconciler.

Every event (create, resume, update, delete) runs the same level-triggered
reconcile cycle; the cycle itself works out from the observed state whether
the resource is being added, changed or withdrawn.
"""

import logging
from typing import Any

import kopf

from admission_proxy.constants import (
    API_GROUP,
    API_VERSION,
    PROXY_TYPE_PLURAL,
    STATUS_REQUEUE_DELAY,
)
from admission_proxy.services.proxy_type_reconciler import ProxyTypeReconciler

logger = logging.getLogger(__name__)


def _reconciler(memo: kopf.Memo) -> ProxyTypeReconciler:
    return ProxyTypeReconciler(
        store=memo.store, target=memo.target, k8s_client=memo.k8s_client
    )


async def _run_cycle(name: str, memo: kopf.Memo, **kwargs: Any) -> None:
    result = await _reconciler(memo).reconcile(name=name, **kwargs)
    if result is not None and result.requeue:
        # The status write is only possible once the full update has landed
        raise kopf.TemporaryError(
            f"ProxyValidatingType {name} needs a status refresh",
            delay=STATUS_REQUEUE_DELAY,
        )


@kopf.on.create(PROXY_TYPE_PLURAL, group=API_GROUP, version=API_VERSION, backoff=1.5)
@kopf.on.resume(PROXY_TYPE_PLURAL, group=API_GROUP, version=API_VERSION, backoff=1.5)
async def ensure_proxy_type(name: str, memo: kopf.Memo, **kwargs: Any) -> None:
    """
    Merge a ProxyValidatingType's rules into the cluster webhook.

    Args:
        name: Name of the ProxyValidatingType resource
        memo: Operator memo holding the aggregate store and primary target
    """
    logger.info(f"Ensuring ProxyValidatingType {name}")
    await _run_cycle(name, memo, **kwargs)


@kopf.on.update(PROXY_TYPE_PLURAL, group=API_GROUP, version=API_VERSION, backoff=1.5)
async def update_proxy_type(
    name: str, diff: kopf.Diff, memo: kopf.Memo, **kwargs: Any
) -> None:
    """Re-render the cluster webhook after a ProxyValidatingType changed."""
    logger.info(
        f"Updating ProxyValidatingType {name}",
        extra={"resource_name": name, "operation": "update"},
    )
    logger.debug(f"Changes for {name}: {list(diff)}")
    await _run_cycle(name, memo, **kwargs)


@kopf.on.delete(
    PROXY_TYPE_PLURAL,
    group=API_GROUP,
    version=API_VERSION,
    backoff=1.5,
    optional=True,
)
async def delete_proxy_type(name: str, memo: kopf.Memo, **kwargs: Any) -> None:
    """
    Withdraw a ProxyValidatingType's rules, then release its finalizer.

    The finalizer is only dropped after the cluster webhook no longer lists
    the resource's rules.
    """
    logger.info(f"Withdrawing ProxyValidatingType {name}")
    await _run_cycle(name, memo, **kwargs)
