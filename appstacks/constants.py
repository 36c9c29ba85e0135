"""
Shared module to hold constant values for the library
"""

# Status condition types
RECONCILED_CONDITION = "Reconciled"
DEPENDENCIES_SATISFIED_CONDITION = "DependenciesSatisfied"

# Status condition values
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

# Fields in the CR status
STATUS_CONDITIONS = "conditions"
STATUS_CONSUMED_SERVICES = "consumedServices"
STATUS_RESOLVED_BINDINGS = "resolvedBindings"
STATUS_IMAGE_REFERENCE = "imageReference"

# The only service binding category understood by the operator
SERVICE_BINDING_CATEGORY_OPENAPI = "openapi"

# Templates for the bookkeeping annotations placed on binding secrets. These
# are namespaced by the group name of the CR kind.
COPIED_TO_NAMESPACES_ANNOTATION_TEMPLATE = "service.{group}/copied-to-namespaces"
CONSUMED_BY_ANNOTATION_TEMPLATE = "service.{group}/consumed-by"

# Label added to the Service when monitoring is requested
MONITOR_ENABLED_LABEL_TEMPLATE = "monitor.{group}/enabled"

# Label marking a CR whose service can be bound to
BINDABLE_LABEL_TEMPLATE = "service.{group}/bindable"

# Event reported whenever an error is recorded on a CR
EVENT_TYPE_WARNING = "Warning"
EVENT_REASON_PROCESSING_ERROR = "ProcessingError"

# Reason used while waiting on cert-manager
CERTIFICATE_NOT_READY_REASON = "CertificateNotReady"

# Name suffixes for generated children
HEADLESS_SERVICE_SUFFIX = "-headless"
SERVICE_CERTIFICATE_SUFFIX = "-svc-crt"
SERVICE_TLS_SECRET_SUFFIX = "-svc-tls"
ROUTE_CERTIFICATE_SUFFIX = "-route-crt"
ROUTE_TLS_SECRET_SUFFIX = "-route-tls"

# Secret name suffixes which identify the CR that a binding secret belongs to
BINDING_SECRET_SUFFIX = "-binding"

## Known API group versions ####################################################

CORE_API_VERSION = "v1"
APPS_API_VERSION = "apps/v1"
AUTOSCALING_API_VERSION = "autoscaling/v1"
ROUTE_API_VERSION = "route.openshift.io/v1"
KNATIVE_API_VERSION = "serving.knative.dev/v1alpha1"
CERT_MANAGER_API_VERSION = "cert-manager.io/v1alpha2"
PROMETHEUS_API_VERSION = "monitoring.coreos.com/v1"
INGRESS_API_VERSION = "networking.k8s.io/v1beta1"
IMAGE_API_VERSION = "image.openshift.io/v1"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Delimiter used for the comma-joined bookkeeping lists
LIST_DELIM = ","
