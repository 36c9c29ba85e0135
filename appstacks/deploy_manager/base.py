"""
This defines the base class for all DeployManager types.
"""

# Standard
from datetime import datetime, timezone
from typing import List, Optional, Tuple
import abc

# First Party
import alog

# Local
from .. import constants
from ..exceptions import ClusterError

log = alog.use_channel("DEPLY")

# Component name reported on emitted events
EVENT_SOURCE_COMPONENT = "appstacks-operator"


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which will be responsible for carrying out
    all reads and writes against the kubernetes cluster.

    Reads report absence through their return values. Writes, and reads the
    cluster rejects, raise one of the classified ClusterError types from
    appstacks.exceptions.
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for cluster
                scoped objects
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present

        Raises:
            ClusterError: The cluster rejected the read. A forbidden read raises
                ResourceForbiddenError.
        """

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """Fetch the list of objects that match either/both the label or field
        selector

        Args:
            kind:  str
                The kind of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object
            api_version:  Optional[str]
                The api_version of the resource kind to fetch
            label_selector:  Optional[str]
                The label_selector to filter the resources
            field_selector:  Optional[str]
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the list operation succeeded
            current_state:  List[dict]
                A list of dict representations for the objects, or an empty
                list if no objects match

        Raises:
            ClusterError: The cluster rejected the list
        """

    @abc.abstractmethod
    def create(self, resource_definition: dict) -> dict:
        """Create a new object in the cluster

        Args:
            resource_definition:  dict
                The full manifest of the object to create

        Returns:
            current_state:  dict
                The state of the object as stored by the cluster
        """

    @abc.abstractmethod
    def update(self, resource_definition: dict) -> dict:
        """Replace an existing object in the cluster. If the definition carries
        a metadata.resourceVersion, the write is rejected with a
        ResourceConflictError when the stored object has moved on.

        Args:
            resource_definition:  dict
                The full manifest of the object to write

        Returns:
            current_state:  dict
                The state of the object as stored by the cluster
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Ensure that the resources identified by the given definitions are
        deleted from the cluster. Resources that are already gone count as a
        success without change. Processing stops at the first failure.

        Args:
            resource_definitions:  List[dict]
                List of resource object dicts identifying what to delete

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status subresource of an object

        Args:
            kind:  str
                The kind of the object
            name:  str
                The full name of the object
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The status object to set onto the given object
            api_version:  Optional[str]
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status update succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """

    @abc.abstractmethod
    def get_server_resources(self, api_version: str) -> List[dict]:
        """Look up the resources that the server serves for a group/version

        Args:
            api_version:  str
                The group/version to look up (e.g. "route.openshift.io/v1")

        Returns:
            resources:  List[dict]
                The resource entries of the group/version, each holding at
                least the "kind"

        Raises:
            ResourceNotFoundError: The group/version is not served
            ClusterError: Discovery failed for any other reason
        """

    ## Shared Implementation ###################################################

    def record_event(
        self,
        involved_object: dict,
        event_type: str,
        reason: str,
        message: str,
    ) -> bool:
        """Emit a kubernetes Event about the given object. Events are
        informational, so failures are logged and reported via the return
        value rather than raised.

        Args:
            involved_object:  dict
                The object the event is about
            event_type:  str
                Normal or Warning
            reason:  str
                Short machine readable reason
            message:  str
                Human readable message

        Returns:
            success:  bool
                Whether or not the event was recorded
        """
        metadata = involved_object.get("metadata", {})
        timestamp = (
            datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        ).replace("+00:00", "Z")
        event = {
            "apiVersion": constants.CORE_API_VERSION,
            "kind": "Event",
            "metadata": {
                "generateName": f"{metadata.get('name')}.",
                "namespace": metadata.get("namespace"),
            },
            "involvedObject": {
                "apiVersion": involved_object.get("apiVersion"),
                "kind": involved_object.get("kind"),
                "name": metadata.get("name"),
                "namespace": metadata.get("namespace"),
                "uid": metadata.get("uid"),
                "resourceVersion": metadata.get("resourceVersion"),
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "count": 1,
            "firstTimestamp": timestamp,
            "lastTimestamp": timestamp,
            "source": {"component": EVENT_SOURCE_COMPONENT},
        }
        try:
            self.create(event)
        except ClusterError as err:
            log.warning(
                "Failed to record %s event [%s] for %s/%s: %s",
                event_type,
                reason,
                metadata.get("namespace"),
                metadata.get("name"),
                err,
            )
            return False
        return True
