"""
Admission Proxy Operator - one primary admission webhook in front of many.

This operator lets independently deployed validation services take part in
Kubernetes admission control behind a single registered webhook:
- Declarative rule sets (ProxyValidatingType resources)
- One generated cluster-wide ValidatingWebhookConfiguration
- Concurrent, failure-policy aware fan-out to secondary webhooks
"""

__version__ = "0.1.0"
