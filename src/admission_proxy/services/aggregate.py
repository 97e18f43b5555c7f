"""
Rule-set aggregate shared by the reconciler and the admission dispatcher.

Every ProxyValidatingType contributes one RuleSet. The aggregate is the
union of all active rule sets; it is immutable once built, so publishing a
new one is a single reference swap and readers never see a partial merge.

The generated ValidatingWebhookConfiguration is a pure function of the
aggregate: rules are emitted in uid order, then declaration order, so two
equal aggregates always render identical bodies.
"""

import base64
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from admission_proxy.constants import (
    ADMISSION_REVIEW_VERSIONS,
    DEFAULT_RULE_SCOPE,
    DEFAULT_SERVICE_PORT,
    DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
    SIDE_EFFECTS_NONE,
    WEBHOOK_API_VERSION,
    WEBHOOK_KIND,
)
from admission_proxy.errors import ValidationError
from admission_proxy.models.endpoint import FailurePolicy
from admission_proxy.models.proxy_type import (
    ProxyValidatingTypeSpec,
    RuleWithOperations,
)

logger = logging.getLogger(__name__)


class PrimaryWebhookTarget(BaseModel):
    """Identity of the primary endpoint the generated webhook points at."""

    model_config = {"frozen": True}

    configuration_name: str
    webhook_name: str
    service_name: str
    service_namespace: str
    path: str
    port: int = DEFAULT_SERVICE_PORT
    ca_bundle: bytes = Field(b"", description="PEM trust anchor for the primary endpoint")
    failure_policy: FailurePolicy = FailurePolicy.FAIL
    timeout_seconds: int = DEFAULT_WEBHOOK_TIMEOUT_SECONDS

    def client_config(self) -> dict[str, Any]:
        return {
            "service": {
                "name": self.service_name,
                "namespace": self.service_namespace,
                "path": self.path,
                "port": self.port,
            },
            "caBundle": base64.b64encode(self.ca_bundle).decode("ascii"),
        }


@dataclass(frozen=True)
class RuleSet:
    """One declarant's rules, keyed by the declaring resource's uid."""

    uid: str
    name: str
    rules: tuple[RuleWithOperations, ...]
    endpoints: tuple[str, ...] = ()

    @classmethod
    def from_resource(cls, body: Mapping[str, Any]) -> "RuleSet":
        """Build a rule set from a raw ProxyValidatingType body.

        Duplicate rules within the resource collapse to their first
        occurrence.

        Raises:
            ValidationError: If the resource spec is malformed
        """
        metadata = body.get("metadata") or {}
        name = metadata.get("name", "")
        uid = metadata.get("uid")
        if not uid:
            raise ValidationError(
                f"ProxyValidatingType {name} has no uid", field="metadata.uid"
            )
        try:
            spec = ProxyValidatingTypeSpec.model_validate(body.get("spec") or {})
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid ProxyValidatingType {name}: {e}", field="spec"
            ) from e

        return cls(
            uid=uid,
            name=name,
            rules=tuple(dict.fromkeys(spec.types)),
            endpoints=tuple(dict.fromkeys(spec.webhooks)),
        )

    def matches(
        self,
        group: str,
        version: str,
        resource: str,
        operation: str,
        subresource: str = "",
    ) -> bool:
        return any(
            rule.matches(group, version, resource, operation, subresource)
            for rule in self.rules
        )


class ProxyTypeData:
    """Immutable union of all active rule sets."""

    __slots__ = ("target", "_entries")

    def __init__(
        self,
        target: PrimaryWebhookTarget,
        entries: Mapping[str, RuleSet] | None = None,
    ):
        self.target = target
        self._entries = MappingProxyType(dict(entries or {}))

    @property
    def entries(self) -> Mapping[str, RuleSet]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, uid: object) -> bool:
        return uid in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProxyTypeData):
            return NotImplemented
        return self.target == other.target and dict(self._entries) == dict(
            other._entries
        )

    def __repr__(self) -> str:
        return f"ProxyTypeData(entries={sorted(self._entries)})"

    def add(self, rule_set: RuleSet) -> "ProxyTypeData":
        """Return a new aggregate with ``rule_set`` inserted or replaced."""
        entries = dict(self._entries)
        entries[rule_set.uid] = rule_set
        return ProxyTypeData(self.target, entries)

    def remove(self, uid: str) -> "ProxyTypeData":
        """Return a new aggregate without the rule set of ``uid``."""
        entries = dict(self._entries)
        entries.pop(uid, None)
        return ProxyTypeData(self.target, entries)

    def rule_sets(self) -> list[RuleSet]:
        return [self._entries[uid] for uid in sorted(self._entries)]

    def rules(self) -> list[RuleWithOperations]:
        return [rule for rule_set in self.rule_sets() for rule in rule_set.rules]

    def matching_rule_sets(
        self,
        group: str,
        version: str,
        resource: str,
        operation: str,
        subresource: str = "",
    ) -> list[RuleSet]:
        """Rule sets (uid order) declaring a rule that covers the request."""
        return [
            rule_set
            for rule_set in self.rule_sets()
            if rule_set.matches(group, version, resource, operation, subresource)
        ]

    def generate_global_webhook(self) -> dict[str, Any]:
        """Render the cluster ValidatingWebhookConfiguration body."""
        return {
            "apiVersion": WEBHOOK_API_VERSION,
            "kind": WEBHOOK_KIND,
            "metadata": {
                "name": self.target.configuration_name,
                "labels": {OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE},
            },
            "webhooks": [
                {
                    "name": self.target.webhook_name,
                    "clientConfig": self.target.client_config(),
                    "rules": [rule.to_k8s() for rule in self.rules()],
                    "failurePolicy": self.target.failure_policy.value,
                    "sideEffects": SIDE_EFFECTS_NONE,
                    "admissionReviewVersions": list(ADMISSION_REVIEW_VERSIONS),
                    "timeoutSeconds": self.target.timeout_seconds,
                }
            ],
        }


def _normalize_rule(rule: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "apiGroups": list(rule.get("apiGroups") or []),
        "apiVersions": list(rule.get("apiVersions") or []),
        "operations": list(rule.get("operations") or []),
        "resources": list(rule.get("resources") or []),
        "scope": rule.get("scope") or DEFAULT_RULE_SCOPE,
    }


def webhook_content(body: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Extract the fields of a webhook configuration the operator owns.

    Server-populated metadata (resourceVersion, managedFields, timestamps)
    and selector defaults are dropped; defaults the API server fills in are
    normalized so a freshly read object compares equal to the generated one.
    """
    if body is None:
        return None

    webhooks = []
    for hook in body.get("webhooks") or []:
        client_config = hook.get("clientConfig") or {}
        service = client_config.get("service") or {}
        webhooks.append(
            {
                "name": hook.get("name"),
                "service": {
                    "name": service.get("name"),
                    "namespace": service.get("namespace"),
                    "path": service.get("path"),
                    "port": service.get("port") or DEFAULT_SERVICE_PORT,
                },
                "url": client_config.get("url"),
                "caBundle": client_config.get("caBundle") or "",
                "rules": [_normalize_rule(rule) for rule in hook.get("rules") or []],
                "failurePolicy": hook.get("failurePolicy") or "Fail",
                "sideEffects": hook.get("sideEffects"),
                "admissionReviewVersions": list(
                    hook.get("admissionReviewVersions") or []
                ),
                "timeoutSeconds": hook.get("timeoutSeconds")
                or DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
            }
        )

    return {"name": (body.get("metadata") or {}).get("name"), "webhooks": webhooks}


def is_active(body: Mapping[str, Any]) -> bool:
    """Whether a resource contributes to the aggregate (not being deleted)."""
    return not (body.get("metadata") or {}).get("deletionTimestamp")


def build_aggregate(
    target: PrimaryWebhookTarget,
    items: Iterable[Mapping[str, Any]],
    exclude_uid: str | None = None,
) -> ProxyTypeData:
    """Recompute an aggregate from listed ProxyValidatingType resources.

    Resources marked for deletion are left out; their own delete cycle
    withdraws them. Resources whose spec does not validate are skipped.
    """
    data = ProxyTypeData(target)
    for item in items:
        metadata = item.get("metadata") or {}
        if exclude_uid is not None and metadata.get("uid") == exclude_uid:
            continue
        if not is_active(item):
            continue
        try:
            data = data.add(RuleSet.from_resource(item))
        except ValidationError as e:
            logger.warning(
                f"Skipping ProxyValidatingType {metadata.get('name')} in aggregate: {e}"
            )
    return data


class AggregateStore:
    """Holds the aggregate snapshot the dispatcher serves from.

    ``publish`` replaces the whole snapshot; concurrent writers resolve as
    last-writer-wins. ``get`` never blocks on writers.
    """

    def __init__(self, initial: ProxyTypeData):
        self._snapshot = initial
        self._revision = 0
        self._lock = threading.Lock()

    @property
    def revision(self) -> int:
        return self._revision

    def get(self) -> ProxyTypeData:
        return self._snapshot

    def publish(self, snapshot: ProxyTypeData) -> int:
        from admission_proxy.observability.metrics import metrics_collector

        with self._lock:
            self._snapshot = snapshot
            self._revision += 1
            revision = self._revision

        metrics_collector.update_aggregate(
            rule_sets=len(snapshot), rules=len(snapshot.rules())
        )
        logger.info(
            f"Published aggregate revision {revision} with {len(snapshot)} rule sets",
            extra={"operation": "aggregate_publish", "revision": revision},
        )
        return revision
