"""
Detection of the optional extension APIs installed in the cluster. Kinds such
as Route, Knative Service, Certificate or ServiceMonitor are only managed when
the cluster serves them.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from . import constants
from .deploy_manager import DeployManagerBase
from .exceptions import ResourceNotFoundError
from .types import ResourceId

log = alog.use_channel("CAPAB")

## Public ######################################################################

# The optional kinds managed by the operator
ROUTE = ResourceId(api_version=constants.ROUTE_API_VERSION, kind="Route")
KNATIVE_SERVICE = ResourceId(api_version=constants.KNATIVE_API_VERSION, kind="Service")
CERTIFICATE = ResourceId(
    api_version=constants.CERT_MANAGER_API_VERSION, kind="Certificate"
)
SERVICE_MONITOR = ResourceId(
    api_version=constants.PROMETHEUS_API_VERSION, kind="ServiceMonitor"
)
INGRESS = ResourceId(api_version=constants.INGRESS_API_VERSION, kind="Ingress")
IMAGE_STREAM = ResourceId(api_version=constants.IMAGE_API_VERSION, kind="ImageStream")


def is_supported(
    deploy_manager: DeployManagerBase,
    api_version: str,
    kind: Optional[str] = None,
) -> bool:
    """Determine whether the cluster serves the given group/version and,
    optionally, a kind within it

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to run discovery
        api_version:  str
            The group/version to look for
        kind:  Optional[str]
            If given, the kind that must be served by the group/version

    Returns:
        supported:  bool
            True if the group/version (and kind) is served

    Raises:
        ClusterError: Discovery failed for a reason other than the group/version
            not being served
    """
    try:
        resources = deploy_manager.get_server_resources(api_version)
    except ResourceNotFoundError:
        log.debug2("Group/version [%s] is not served", api_version)
        return False

    if kind is None:
        return True
    supported = any(resource.get("kind") == kind for resource in resources)
    log.debug3("Kind [%s] in [%s] supported: %s", kind, api_version, supported)
    return supported


def is_kind_supported(deploy_manager: DeployManagerBase, res_id: ResourceId) -> bool:
    """Shorthand for is_supported with a kind identifier"""
    return is_supported(deploy_manager, res_id.api_version, res_id.kind)


def is_binding_supported(
    deploy_manager: DeployManagerBase,
    op_config: "OperatorConfig",  # noqa: F821
) -> bool:
    """Determine whether any of the configured service binding kinds is
    installed in the cluster
    """
    for binding_kind in op_config.binding_kinds:
        if is_kind_supported(deploy_manager, binding_kind):
            log.debug2("Found service binding kind %s", binding_kind.global_id)
            return True
    return False
