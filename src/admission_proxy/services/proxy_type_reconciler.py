"""
ProxyValidatingType reconciler.

Each cycle runs three stages:

- observe: read the resource, the generated cluster webhook configuration
  and every other ProxyValidatingType (the other declarants' rules are
  rebuilt from durable state, never from process memory);
- analyze: a pure function deciding what has to change;
- act: write the webhook configuration first, then the finalizer or status,
  and only then publish the new aggregate to the dispatcher.

A failure in any write aborts the cycle before later steps so the dispatcher
never serves rules the cluster has not been told about.
"""

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    API_GROUP,
    API_VERSION,
    PROXY_TYPE_PLURAL,
    TYPE_FINALIZER,
)
from ..models.proxy_type import ProxyValidatingTypeStatus
from ..utils.kubernetes import api_error, to_dict
from .aggregate import (
    AggregateStore,
    PrimaryWebhookTarget,
    ProxyTypeData,
    RuleSet,
    build_aggregate,
    webhook_content,
)
from .base_reconciler import BaseReconciler


@dataclass
class ObservedState:
    """Cluster state read at the start of a cycle."""

    custom_resource: dict[str, Any]
    cluster_webhook: dict[str, Any] | None
    aggregate: ProxyTypeData


@dataclass
class AnalyzedState:
    """What a cycle has to change; see ``ProxyTypeReconciler.analyze``."""

    custom_resource: dict[str, Any]
    new_aggregate: ProxyTypeData
    webhook: dict[str, Any]
    resource_version: str | None = None
    delete: bool = False
    create: bool = False
    update: bool = False
    finalizer_change: bool = False
    status_change: bool = False


@dataclass
class ReconcileResult:
    """Outcome of ``act``."""

    revision: int
    requeue: bool = False


def _metadata(body: dict[str, Any]) -> dict[str, Any]:
    return body.get("metadata") or {}


class ProxyTypeReconciler(BaseReconciler):
    """Converges ProxyValidatingType resources into the cluster webhook."""

    resource_type = "proxyvalidatingtype"

    def __init__(
        self,
        store: AggregateStore,
        target: PrimaryWebhookTarget,
        k8s_client: client.ApiClient | None = None,
    ):
        super().__init__(k8s_client)
        self.store = store
        self.target = target

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(self.kubernetes_client)

    @property
    def admission_api(self) -> client.AdmissionregistrationV1Api:
        return client.AdmissionregistrationV1Api(self.kubernetes_client)

    async def do_reconcile(self, name: str, **kwargs) -> ReconcileResult | None:
        observed = await self.observe(name)
        if observed is None:
            self.logger.info(
                f"ProxyValidatingType {name} no longer exists, nothing to do",
                resource_name=name,
            )
            return None
        return await self.act(self.analyze(observed))

    async def observe(self, name: str) -> ObservedState | None:
        """
        Read the cluster state relevant to one resource.

        Returns:
            The observed state, or None when the resource is gone
        """
        try:
            custom_resource = await asyncio.to_thread(
                self.custom_api.get_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                PROXY_TYPE_PLURAL,
                name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise api_error(f"read ProxyValidatingType {name}", e) from e

        try:
            webhook = await asyncio.to_thread(
                self.admission_api.read_validating_webhook_configuration,
                self.target.configuration_name,
            )
            cluster_webhook = to_dict(self.kubernetes_client, webhook)
        except ApiException as e:
            if e.status != 404:
                raise api_error(
                    f"read webhook configuration {self.target.configuration_name}", e
                ) from e
            cluster_webhook = None

        try:
            listing = await asyncio.to_thread(
                self.custom_api.list_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                PROXY_TYPE_PLURAL,
            )
        except ApiException as e:
            raise api_error("list ProxyValidatingTypes", e) from e

        aggregate = build_aggregate(
            self.target,
            listing.get("items") or [],
            exclude_uid=_metadata(custom_resource).get("uid"),
        )
        return ObservedState(custom_resource, cluster_webhook, aggregate)

    def analyze(self, observed: ObservedState) -> AnalyzedState:
        """
        Decide the writes of this cycle. Pure: no API calls, no side effects.

        Raises:
            ValidationError: If a resource that is not being deleted has an
                invalid spec
        """
        resource = observed.custom_resource
        metadata = _metadata(resource)
        delete = bool(metadata.get("deletionTimestamp"))

        if delete:
            new_aggregate = observed.aggregate.remove(metadata.get("uid", ""))
        else:
            new_aggregate = observed.aggregate.add(RuleSet.from_resource(resource))

        webhook = new_aggregate.generate_global_webhook()
        cluster_webhook = observed.cluster_webhook
        create = cluster_webhook is None
        update = not create and webhook_content(cluster_webhook) != webhook_content(
            webhook
        )

        has_finalizer = TYPE_FINALIZER in (metadata.get("finalizers") or [])
        finalizer_change = has_finalizer if delete else not has_finalizer

        status = ProxyValidatingTypeStatus.model_validate(resource.get("status") or {})
        status_change = status.observed_generation != metadata.get("generation")

        return AnalyzedState(
            custom_resource=resource,
            new_aggregate=new_aggregate,
            webhook=webhook,
            resource_version=None
            if create
            else _metadata(cluster_webhook).get("resourceVersion"),
            delete=delete,
            create=create,
            update=update,
            finalizer_change=finalizer_change,
            status_change=status_change,
        )

    async def act(self, state: AnalyzedState) -> ReconcileResult:
        """
        Apply the writes decided by ``analyze``, in order.

        A finalizer change is written as a full-object replace; otherwise a
        lagging observedGeneration is written through the status
        subresource. The status subresource drops status changes carried by
        a full replace, so when both are due the result asks for a requeue.

        Raises:
            KubernetesAPIError: If any write fails; later steps are skipped
        """
        name = _metadata(state.custom_resource).get("name", "")

        if state.create:
            await self._create_webhook(state.webhook)
        elif state.update:
            await self._replace_webhook(state.webhook, state.resource_version)
        else:
            self.logger.debug("Cluster webhook configuration is up to date")

        requeue = False
        if state.finalizer_change:
            await self._replace_resource(name, self._with_finalizer(state))
            requeue = state.status_change and not state.delete
        elif state.status_change:
            await self._replace_status(name, self._with_observed_generation(state))

        revision = self.store.publish(state.new_aggregate)
        return ReconcileResult(revision=revision, requeue=requeue)

    def _with_finalizer(self, state: AnalyzedState) -> dict[str, Any]:
        body = copy.deepcopy(state.custom_resource)
        metadata = body.setdefault("metadata", {})
        finalizers = [f for f in metadata.get("finalizers") or [] if f != TYPE_FINALIZER]
        if state.delete:
            self.logger.info(f"Removing finalizer from {metadata.get('name')}")
        else:
            self.logger.info(f"Adding finalizer to {metadata.get('name')}")
            finalizers.append(TYPE_FINALIZER)
        metadata["finalizers"] = finalizers
        return body

    def _with_observed_generation(self, state: AnalyzedState) -> dict[str, Any]:
        body = copy.deepcopy(state.custom_resource)
        generation = _metadata(body).get("generation")
        self.logger.info(f"Updating observedGeneration to {generation}")
        body["status"] = dict(body.get("status") or {}, observedGeneration=generation)
        return body

    async def _create_webhook(self, body: dict[str, Any]) -> None:
        self.logger.info(f"Creating webhook configuration {self.target.configuration_name}")
        try:
            await asyncio.to_thread(
                self.admission_api.create_validating_webhook_configuration, body
            )
        except ApiException as e:
            raise api_error(
                f"create webhook configuration {self.target.configuration_name}", e
            ) from e

    async def _replace_webhook(
        self, body: dict[str, Any], resource_version: str | None
    ) -> None:
        self.logger.info(f"Updating webhook configuration {self.target.configuration_name}")
        body = copy.deepcopy(body)
        if resource_version:
            body["metadata"]["resourceVersion"] = resource_version
        try:
            await asyncio.to_thread(
                self.admission_api.replace_validating_webhook_configuration,
                self.target.configuration_name,
                body,
            )
        except ApiException as e:
            raise api_error(
                f"update webhook configuration {self.target.configuration_name}", e
            ) from e

    async def _replace_resource(self, name: str, body: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(
                self.custom_api.replace_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                PROXY_TYPE_PLURAL,
                name,
                body,
            )
        except ApiException as e:
            raise api_error(f"update ProxyValidatingType {name}", e) from e

    async def _replace_status(self, name: str, body: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(
                self.custom_api.replace_cluster_custom_object_status,
                API_GROUP,
                API_VERSION,
                PROXY_TYPE_PLURAL,
                name,
                body,
            )
        except ApiException as e:
            raise api_error(f"update status of ProxyValidatingType {name}", e) from e
