"""
Constants used throughout the admission proxy operator.

This module defines all constant values used by the operator including:
- Custom resource coordinates and finalizer names
- Generated webhook configuration defaults
- Admission wire protocol values
"""

# Custom resource coordinates
API_GROUP = "admissionproxy.dev"
API_VERSION = "v1alpha1"
PROXY_TYPE_PLURAL = "proxyvalidatingtypes"

# Finalizer guarding withdrawal of a declarant's rules from the cluster webhook
TYPE_FINALIZER = "admissionproxy.dev/type-finalizer"

# Label constants for resource identification and management
OPERATOR_LABEL_KEY = "admissionproxy.dev/managed-by"
OPERATOR_LABEL_VALUE = "admission-proxy-operator"

# Generated cluster webhook configuration
WEBHOOK_API_VERSION = "admissionregistration.k8s.io/v1"
WEBHOOK_KIND = "ValidatingWebhookConfiguration"
DEFAULT_WEBHOOK_CONFIGURATION_NAME = "admission-proxy"
DEFAULT_WEBHOOK_NAME = "proxy.admissionproxy.dev"
DEFAULT_PROXY_PATH = "/proxy"
DEFAULT_PROXY_SERVICE_NAME = "admission-proxy"
DEFAULT_PROXY_SERVICE_PORT = 443
DEFAULT_PRIMARY_TIMEOUT_SECONDS = 30
ADMISSION_REVIEW_VERSIONS = ("v1", "v1beta1")
SIDE_EFFECTS_NONE = "None"

# Values the API server fills in when a webhook configuration omits them
DEFAULT_RULE_SCOPE = "*"
DEFAULT_SERVICE_PORT = 443
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 10

# Admission wire protocol
ADMISSION_REVIEW_KIND = "AdmissionReview"
DEFAULT_ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_OPERATIONS = frozenset({"CREATE", "UPDATE", "DELETE", "CONNECT"})
WILDCARD = "*"
DENIED_STATUS_CODE = 403

# Headers that must not be forwarded to a secondary webhook
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)

# Secondary webhook calls
DEFAULT_WEBHOOK_CALL_TIMEOUT = 10.0

# TLS material provisioned outside the operator
DEFAULT_CERT_DIR = "/tmp/k8s-webhook-server/serving-certs"
CERT_FILE_NAME = "tls.crt"
KEY_FILE_NAME = "tls.key"
CA_FILE_NAME = "ca.crt"

# Retry configuration
CONFLICT_RETRY_DELAY = 1
DEFAULT_RETRY_DELAY = 30
STATUS_REQUEUE_DELAY = 1
