"""
Client-side field indexes over CRs. An index function maps a CR manifest to
the list of values it is indexed under, and lookups list the CRs of a
namespace and keep the ones indexed under the requested value.
"""

# Standard
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase
from ..exceptions import assert_cluster
from ..utils import nested_get

log = alog.use_channel("INDEX")

## Public ######################################################################

# The names of the indexes registered by the operator
IMAGE_STREAM_NAME_INDEX = "spec.applicationImage"
BINDINGS_RESOURCE_REF_INDEX = "spec.bindings.resourceRef"

IndexFunction = Callable[[dict], List[str]]


@dataclass(frozen=True)
class ImageReference:
    """The parts of a docker image reference"""

    registry: str = ""
    namespace: str = ""
    name: str = ""
    tag: str = ""
    id: str = ""


def parse_image_reference(spec: str) -> Optional[ImageReference]:
    """Parse a docker image reference of the form
    [registry/][namespace/]name[:tag][@id]

    The first segment is only taken as the registry if it looks like a host,
    which means it holds a "." or a ":" or is "localhost".

    Returns:
        reference:  Optional[ImageReference]
            The parsed reference, or None if the reference has no name
    """
    if not spec:
        return None
    image_id = ""
    if "@" in spec:
        spec, image_id = spec.split("@", 1)

    tag = ""
    last_slash = spec.rfind("/")
    last_colon = spec.rfind(":")
    if last_colon > last_slash:
        spec, tag = spec[:last_colon], spec[last_colon + 1 :]

    parts = spec.split("/")
    registry = namespace = ""
    if len(parts) == 1:
        name = parts[0]
    elif len(parts) == 2:
        if _is_registry_name(parts[0]):
            registry, name = parts
        else:
            namespace, name = parts
    else:
        registry, namespace, name = parts[0], parts[1], "/".join(parts[2:])

    if not name:
        log.debug2("Invalid image reference [%s]", spec)
        return None
    return ImageReference(
        registry=registry, namespace=namespace, name=name, tag=tag, id=image_id
    )


def index_application_image(manifest: dict) -> List[str]:
    """Index a CR by the <namespace>/<name> of its image stream. Images
    without a namespace are looked up in the namespace of the CR.
    """
    image = parse_image_reference(nested_get(manifest, "spec.applicationImage"))
    if image is None:
        return []
    namespace = image.namespace or nested_get(manifest, "metadata.namespace")
    return [f"{namespace}/{image.name}"]


def index_binding_resource_ref(manifest: dict) -> List[str]:
    """Index a CR by the name of the binding secret it references"""
    resource_ref = nested_get(manifest, "spec.bindings.resourceRef")
    return [resource_ref] if resource_ref else []


class FieldIndexer:
    """Registry of the index functions by kind and field"""

    def __init__(self):
        self._indexes: Dict[Tuple[str, str, str], IndexFunction] = {}

    def register(
        self,
        kind: str,
        api_version: str,
        field: str,
        index_func: IndexFunction,
    ):
        """Register an index function for a field of a kind"""
        log.debug2("Registering index %s for %s/%s", field, api_version, kind)
        self._indexes[(api_version, kind, field)] = index_func

    def list_by_index(  # pylint: disable=too-many-arguments
        self,
        deploy_manager: DeployManagerBase,
        kind: str,
        api_version: str,
        namespace: str,
        field: str,
        value: str,
    ) -> List[dict]:
        """List the CRs of a namespace which are indexed under the value

        Raises:
            ValueError: No index is registered for the field
            ClusterError: The CRs could not be listed
        """
        index_func = self._indexes.get((api_version, kind, field))
        if index_func is None:
            raise ValueError(f"No index {field} registered for {api_version}/{kind}")

        success, manifests = deploy_manager.filter_objects_current_state(
            kind=kind, namespace=namespace, api_version=api_version
        )
        assert_cluster(success, f"Failed to list {kind} in namespace {namespace}")
        matches = [manifest for manifest in manifests if value in index_func(manifest)]
        log.debug3(
            "Found %d %s in %s indexed by %s=%s",
            len(matches),
            kind,
            namespace,
            field,
            value,
        )
        return matches


## Implementation Details ######################################################


def _is_registry_name(segment: str) -> bool:
    return "." in segment or ":" in segment or segment == "localhost"
