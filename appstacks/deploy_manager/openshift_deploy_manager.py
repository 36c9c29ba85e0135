"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from typing import List, Optional, Tuple
import threading

# Third Party
from kubernetes.client.exceptions import ApiException
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    BadRequestError,
    ConflictError,
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
    UnprocessibleEntityError,
)
from openshift.dynamic.resource import Resource
import kubernetes

# First Party
import alog

# Local
from .. import exceptions
from ..types import ResourceId
from .base import DeployManagerBase

log = alog.use_channel("OSFTD")

## Deploy Manager ##############################################################


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, client: Optional[DynamicClient] = None):
        """
        Args:
            client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily
                from the in-cluster or local kube config.
        """
        log.debug("Initializing openshift client")
        self._client = client

        # Keep a threading lock for performing status updates. This is necessary
        # to avoid running into 409 Conflict errors if concurrent threads are
        # trying to perform status updates
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        # Use the lazy discovery tool to first get all objects of the given type
        # in the given namespace, then look for the specific resource by name
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None

        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        except DynamicApiError as err:
            log.debug(
                "Fetching [%s/%s] in namespace [%s] failed: %s",
                kind,
                name,
                namespace,
                err.summary(),
            )
            res_id = ResourceId(
                api_version=api_version,
                kind=kind,
                name=name,
                namespace=namespace,
            )
            raise self._translate_error(err, res_id) from err

        # If the resource was found, return it's dict representation
        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []

        if not namespace:
            resources.namespaced = False

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []
        except DynamicApiError as err:
            log.debug(
                "Listing objects of kind [%s] in namespace [%s] failed: %s",
                kind,
                namespace,
                err.summary(),
            )
            res_id = ResourceId(
                api_version=api_version,
                kind=kind,
                namespace=namespace,
            )
            raise self._translate_error(err, res_id) from err

        return True, list_obj.to_dict().get("items", [])

    @alog.logged_function(log.debug2)
    def create(self, resource_definition: dict) -> dict:
        res_id = ResourceId.from_resource(resource_definition)
        resource_handle = self._require_resource_handle(res_id)
        log.debug2("Creating [%s/%s] in %s", res_id.kind, res_id.name, res_id.namespace)
        try:
            return resource_handle.create(
                body=resource_definition, namespace=res_id.namespace
            ).to_dict()
        except DynamicApiError as err:
            raise self._translate_error(err, res_id, creating=True) from err

    @alog.logged_function(log.debug2)
    def update(self, resource_definition: dict) -> dict:
        res_id = ResourceId.from_resource(resource_definition)
        resource_handle = self._require_resource_handle(res_id)
        log.debug2("Updating [%s/%s] in %s", res_id.kind, res_id.name, res_id.namespace)
        try:
            return resource_handle.replace(
                body=resource_definition, namespace=res_id.namespace
            ).to_dict()
        except DynamicApiError as err:
            raise self._translate_error(err, res_id) from err

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = self._disable(resource_definition) or changed
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation failed for %s/%s: %s",
                    resource_definition.get("kind"),
                    resource_definition.get("metadata", {}).get("name"),
                    err,
                )
                return False, changed
        return True, changed

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False

        # If resource is not namespaced set kubernetes api namespaced to false
        if not namespace:
            resource_handle.namespaced = False

        with self._status_lock:
            try:
                resource = resource_handle.get(name=name, namespace=namespace).to_dict()
            except NotFoundError:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False

            log.debug2(
                "Resource version: %s",
                resource.get("metadata", {}).get("resourceVersion"),
            )
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return True, False

            resource["status"] = status
            try:
                resource_handle.status.replace(body=resource)
            except DynamicApiError as err:
                log.warning(
                    "Failed to set the status for [%s/%s] in %s: %s",
                    kind,
                    name,
                    namespace,
                    err,
                )
                return False, False
            log.debug2(
                "Successfully set the status for [%s/%s] in %s",
                kind,
                name,
                namespace,
            )
        return True, True

    def get_server_resources(self, api_version: str) -> List[dict]:
        path = (
            f"/api/{api_version}" if "/" not in api_version else f"/apis/{api_version}"
        )
        log.debug3("Discovering resources at %s", path)
        try:
            resource_list = self.client.request("get", path)
        except NotFoundError as err:
            raise exceptions.ResourceNotFoundError(
                f"The server does not serve {api_version}"
            ) from err
        except (DynamicApiError, ApiException) as err:
            raise exceptions.ClusterError(
                f"Failed to discover resources for {api_version}: {err}"
            ) from err
        return resource_list.to_dict().get("resources", [])

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")

            # Create Empty Config and load in-cluster information
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)

            # Generate ApiClient and return Openshift DynamicClient
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        resources = None
        try:
            resources = self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No unique resource handle for kind [%s] in [%s]",
                kind,
                api_version,
            )
        return resources

    def _require_resource_handle(self, res_id: ResourceId) -> Resource:
        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        if not resource_handle:
            raise exceptions.ResourceNotFoundError(
                f'no matches for kind "{res_id.kind}" in version "{res_id.api_version}"'
            )
        if not res_id.namespace:
            resource_handle.namespaced = False
        return resource_handle

    @staticmethod
    def _translate_error(
        err: DynamicApiError, res_id: ResourceId, creating: bool = False
    ) -> exceptions.ClusterError:
        """Map an openshift client error onto the classified error types"""
        message = (
            f"{res_id.kind} [{res_id.name}] in [{res_id.namespace}]: {err.summary()}"
        )
        if isinstance(err, NotFoundError):
            return exceptions.ResourceNotFoundError(message)
        if isinstance(err, ConflictError):
            if creating:
                return exceptions.ResourceAlreadyExistsError(message)
            return exceptions.ResourceConflictError(message)
        if isinstance(err, (UnprocessibleEntityError, BadRequestError)):
            return exceptions.ResourceInvalidError(message)
        if isinstance(err, ForbiddenError):
            return exceptions.ResourceForbiddenError(message)
        return exceptions.ClusterError(message)

    def _disable(self, resource_definition):
        """Disable a single resource to the cluster if it exists

        Args:
            resource_definition:  dict
                The resource manifest to disable

        Returns:
            changed:  bool
                Whether or not the disable resulted in a meaningful change
        """
        changed = False
        res_id = ResourceId.from_resource(resource_definition)
        kind = res_id.kind
        name = res_id.name
        namespace = res_id.namespace

        # Get the resource handle, handling missing kinds as success without
        # change
        log.debug2("Fetching resource [%s/%s]", res_id.api_version, kind)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=kind
            )

            # If resource is not namespaced set kubernetes api namespaced to false
            if not namespace:
                resource_handle.namespaced = False

            log.debug2(
                "Attempting to delete [%s/%s/%s] from %s",
                res_id.api_version,
                kind,
                name,
                namespace,
            )
            resource_handle.delete(name=name, namespace=namespace)
            changed = True

        # If the kind or instance is not found, that's a success without change
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2("Valid error caught when disabling [%s/%s]: %s", kind, name, err)

        return changed
