"""
Outcome errors for calls to secondary webhooks.

These errors never escape the dispatcher: each one is folded into an allow
or deny verdict through the failure policy of the endpoint that raised it.
"""


class WebhookCallError(Exception):
    """Base class for a failed or denying secondary webhook call."""

    kind = "error"

    def __init__(self, endpoint: str, message: str):
        super().__init__(message)
        self.endpoint = endpoint
        self.message = message

    def __str__(self) -> str:
        return f"secondary webhook {self.endpoint} {self.kind}: {self.message}"


class TransportError(WebhookCallError):
    """Network, TLS or timeout failure while calling the endpoint."""

    kind = "failed"


class ProtocolError(WebhookCallError):
    """The endpoint answered with an absent, unreadable or malformed review."""

    kind = "returned an invalid response"


class DenialError(WebhookCallError):
    """The endpoint explicitly rejected the request (allowed=false)."""

    kind = "denied the request"
