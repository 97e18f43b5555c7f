"""
Services package - reconciliation and admission dispatch.

Contains:
- The rule-set aggregate and its store
- The ProxyValidatingType reconciler
- The admission dispatcher
"""

from .aggregate import AggregateStore, PrimaryWebhookTarget, ProxyTypeData, RuleSet
from .dispatcher import AdmissionDispatcher, AdmissionVerdict
from .proxy_type_reconciler import ProxyTypeReconciler

__all__ = [
    "AdmissionDispatcher",
    "AdmissionVerdict",
    "AggregateStore",
    "PrimaryWebhookTarget",
    "ProxyTypeData",
    "ProxyTypeReconciler",
    "RuleSet",
]
