"""
Pydantic models for the admission.k8s.io AdmissionReview wire format.

Only the fields the proxy routes on are modelled; the raw request body is
forwarded to secondary webhooks untouched, so nothing here is re-serialized
towards them.
"""

from typing import Any

from pydantic import BaseModel, Field

from admission_proxy.constants import (
    ADMISSION_REVIEW_KIND,
    DEFAULT_ADMISSION_API_VERSION,
    DENIED_STATUS_CODE,
)


class GroupVersionResource(BaseModel):
    """Fully qualified resource a request targets."""

    group: str = ""
    version: str = ""
    resource: str = ""


class AdmissionRequest(BaseModel):
    """The request half of an AdmissionReview."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    uid: str = Field(..., min_length=1)
    resource: GroupVersionResource
    sub_resource: str = Field("", alias="subResource")
    operation: str
    name: str = ""
    namespace: str = ""


class AdmissionReview(BaseModel):
    """Inbound AdmissionReview envelope."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    api_version: str = Field(DEFAULT_ADMISSION_API_VERSION, alias="apiVersion")
    kind: str = ADMISSION_REVIEW_KIND
    request: AdmissionRequest


class AdmissionResponseStatus(BaseModel):
    """Status attached to a response; secondary webhooks put denials here."""

    model_config = {"extra": "allow"}

    message: str = ""
    code: int | None = None


class AdmissionResponse(BaseModel):
    """The response half of an AdmissionReview returned by a webhook."""

    model_config = {"extra": "allow"}

    uid: str = ""
    allowed: bool
    status: AdmissionResponseStatus | None = None


class AdmissionReviewResponse(BaseModel):
    """AdmissionReview envelope as returned by a secondary webhook."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    api_version: str = Field(DEFAULT_ADMISSION_API_VERSION, alias="apiVersion")
    response: AdmissionResponse


def build_review_response(
    uid: str, allowed: bool, message: str | None, api_version: str
) -> dict[str, Any]:
    """Render the outbound AdmissionReview for the API server."""
    response: dict[str, Any] = {"uid": uid, "allowed": allowed}
    if not allowed:
        response["status"] = {
            "code": DENIED_STATUS_CODE,
            "message": message or "denied by secondary webhook",
        }
    elif message:
        response["status"] = {"message": message}
    return {
        "apiVersion": api_version,
        "kind": ADMISSION_REVIEW_KIND,
        "response": response,
    }
