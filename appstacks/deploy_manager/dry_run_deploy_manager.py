"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import copy
import uuid

# First Party
import alog

# Local
from .. import constants
from ..exceptions import (
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceInvalidError,
    ResourceNotFoundError,
)
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")

# Lock to ensure writes are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# The kinds that every cluster serves
DEFAULT_API_RESOURCES = {
    constants.CORE_API_VERSION: [
        "ConfigMap",
        "Event",
        "Namespace",
        "Secret",
        "Service",
        "ServiceAccount",
    ],
    constants.APPS_API_VERSION: ["Deployment", "StatefulSet"],
    constants.AUTOSCALING_API_VERSION: ["HorizontalPodAutoscaler"],
}

# Top level keys which are not part of the desired state of an object
_NON_SPEC_KEYS = ["apiVersion", "kind", "metadata", "status"]

# Metadata keys which are owned by the server
_SERVER_METADATA_KEYS = [
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
]


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        api_resources: Optional[Dict[str, Iterable[str]]] = None,
        strict_resource_version: bool = True,
    ):
        """Construct with an optional set of pre-existing resources

        Args:
            resources:  Optional[List[dict]]
                Objects that exist in the cluster before any operation. Their
                kinds are added to the served api resources.
            api_resources:  Optional[Dict[str, Iterable[str]]]
                Additional kinds served by the cluster, keyed by api_version
            strict_resource_version:  bool
                If true, updates carrying a stale resourceVersion are rejected
                with a conflict
        """
        self.strict_resource_version = strict_resource_version
        self._cluster_content = {}
        self._resource_version = 0
        self._api_resources = {
            api_version: set(kinds)
            for api_version, kinds in DEFAULT_API_RESOURCES.items()
        }
        for api_version, kinds in (api_resources or {}).items():
            self._api_resources.setdefault(api_version, set()).update(kinds)

        # Registered watch callbacks keyed by watch key
        self._watches = {}

        for resource in resources or []:
            resource = copy.deepcopy(resource)
            self.add_api_resource(resource.get("apiVersion"), resource.get("kind"))
            metadata = resource.setdefault("metadata", {})
            metadata.setdefault("generation", 1)
            self._store(resource, preserve_metadata=True)

    ## Interface ###############################################################

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        matches = []
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        for api_ver, entries in kind_entries.items():
            if name in entries and (api_ver == api_version or api_version is None):
                matches.append(entries[name])
        log.debug3(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, copy.deepcopy(matches[0])
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug2(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
        for api_ver, entries in kind_entries.items():
            if api_ver != api_version and api_version is not None:
                continue
            for resource in entries.values():
                labels = resource.get("metadata", {}).get("labels") or {}
                if label_selector and not _match_selector(labels, label_selector):
                    continue
                if field_selector and not _match_selector(
                    _convert_dict_to_dot(resource), field_selector
                ):
                    continue
                matches.append(copy.deepcopy(resource))
        return True, matches

    def create(self, resource_definition):
        resource = copy.deepcopy(resource_definition)
        api_version, kind, name, namespace = self._identifiers(resource)
        if not name:
            generate_name = resource.get("metadata", {}).get("generateName")
            if not generate_name:
                raise ResourceInvalidError(f"Cannot create {kind} without a name")
            name = f"{generate_name}{uuid.uuid4().hex[:5]}"
            resource["metadata"]["name"] = name
        log.debug("DRY RUN create [%s/%s/%s/%s]", namespace, kind, api_version, name)
        self._assert_served(api_version, kind)

        with DRY_RUN_CLUSTER_LOCK:
            _, current = self.get_object_current_state(
                kind=kind, name=name, namespace=namespace, api_version=api_version
            )
            if current is not None:
                raise ResourceAlreadyExistsError(
                    f"{kind} [{name}] already exists in namespace [{namespace}]"
                )
            metadata = resource["metadata"]
            metadata["uid"] = str(uuid.uuid4())
            metadata["generation"] = 1
            metadata["creationTimestamp"] = _now()
            stored = self._store(resource)

        self._call_watches(KubeEventType.ADDED, stored)
        return copy.deepcopy(stored)

    def update(self, resource_definition):
        resource = copy.deepcopy(resource_definition)
        api_version, kind, name, namespace = self._identifiers(resource)
        log.debug("DRY RUN update [%s/%s/%s/%s]", namespace, kind, api_version, name)
        self._assert_served(api_version, kind)

        with DRY_RUN_CLUSTER_LOCK:
            _, current = self.get_object_current_state(
                kind=kind, name=name, namespace=namespace, api_version=api_version
            )
            if current is None:
                raise ResourceNotFoundError(
                    f"{kind} [{name}] not found in namespace [{namespace}]"
                )

            metadata = resource.setdefault("metadata", {})
            current_metadata = current["metadata"]
            requested_version = metadata.get("resourceVersion")
            if (
                self.strict_resource_version
                and requested_version
                and requested_version != current_metadata.get("resourceVersion")
            ):
                log.debug(
                    "Rejecting stale update of [%s/%s]: %s != %s",
                    kind,
                    name,
                    requested_version,
                    current_metadata.get("resourceVersion"),
                )
                raise ResourceConflictError(
                    f"Operation cannot be fulfilled on {kind} [{name}]: the object "
                    "has been modified; please apply your changes to the latest version"
                )

            # The status is a subresource and is never written by an update
            for key in _SERVER_METADATA_KEYS:
                if key in current_metadata:
                    metadata[key] = current_metadata[key]
            if "status" in current:
                resource["status"] = current["status"]
            else:
                resource.pop("status", None)

            if resource == current:
                log.debug2("No change for [%s/%s]", kind, name)
                return current

            if _desired_state(resource) != _desired_state(current):
                metadata["generation"] = current_metadata.get("generation", 1) + 1
            stored = self._store(resource)

        self._call_watches(KubeEventType.MODIFIED, stored, current)
        return copy.deepcopy(stored)

    def disable(self, resource_definitions):
        log.debug("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version, kind, name, namespace = self._identifiers(resource)
            with DRY_RUN_CLUSTER_LOCK:
                _, content = self.get_object_current_state(
                    kind=kind, api_version=api_version, namespace=namespace, name=name
                )
                if content is None:
                    continue
                self._delete_key(namespace, kind, content["apiVersion"], name)
            changed = True
            self._call_watches(KubeEventType.DELETED, content)
        return True, changed

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.debug2(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        with DRY_RUN_CLUSTER_LOCK:
            _, object_content = self.get_object_current_state(
                kind, name, namespace, api_version
            )
            if object_content is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            prev_status = object_content.get("status")
            if prev_status == status:
                return True, False
            previous = copy.deepcopy(object_content)
            object_content["status"] = copy.deepcopy(status)
            stored = self._store(object_content)
        self._call_watches(KubeEventType.MODIFIED, stored, previous)
        return True, True

    def get_server_resources(self, api_version):
        if api_version not in self._api_resources:
            raise ResourceNotFoundError(
                f"The server could not find the requested resource ({api_version})"
            )
        return [{"kind": kind} for kind in sorted(self._api_resources[api_version])]

    ## Dry Run Methods #########################################################

    def add_api_resource(self, api_version: str, kind: str):
        """Make the cluster serve the given kind"""
        self._api_resources.setdefault(api_version, set()).add(kind)

    def remove_api_version(self, api_version: str):
        """Make the cluster stop serving the given group/version"""
        self._api_resources.pop(api_version, None)

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[KubeWatchEvent], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for changes on a given api_version/kind.
        The callback is handed a KubeWatchEvent for every create, update,
        status update and delete.
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        self._watches.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    @staticmethod
    def _identifiers(resource: dict) -> Tuple[str, str, str, Optional[str]]:
        metadata = resource.get("metadata") or {}
        return (
            resource.get("apiVersion"),
            resource.get("kind"),
            metadata.get("name"),
            metadata.get("namespace"),
        )

    def _assert_served(self, api_version: str, kind: str):
        if kind not in self._api_resources.get(api_version, set()):
            raise ResourceNotFoundError(
                f'no matches for kind "{kind}" in version "{api_version}"'
            )

    def _get_registered_watches(
        self, api_version: str, kind: str, namespace: str, name: str
    ) -> List[Tuple[str, Callable]]:
        keys = [
            self._watch_key(api_version, kind, namespace, name),
            self._watch_key(api_version, kind, namespace),
            self._watch_key(api_version, kind),
        ]
        return [
            (key, callback)
            for key, callbacks in self._watches.items()
            if key in keys
            for callback in callbacks
        ]

    def _call_watches(
        self,
        event_type: KubeEventType,
        resource: dict,
        old_resource: Optional[dict] = None,
    ):
        api_version, kind, name, namespace = self._identifiers(resource)
        for key, callback in self._get_registered_watches(
            api_version, kind, namespace, name
        ):
            log.debug2("Calling registered watch [%s] for [%s]", callback, key)
            callback(
                KubeWatchEvent(
                    type=event_type,
                    resource=copy.deepcopy(resource),
                    old_resource=copy.deepcopy(old_resource),
                )
            )

    def _store(self, resource: dict, preserve_metadata: bool = False) -> dict:
        """Place the resource in the cluster content with a fresh
        resourceVersion
        """
        api_version, kind, name, namespace = self._identifiers(resource)
        metadata = resource.setdefault("metadata", {})
        self._resource_version += 1
        if not preserve_metadata or "resourceVersion" not in metadata:
            metadata["resourceVersion"] = str(self._resource_version)
        if not preserve_metadata or "uid" not in metadata:
            metadata.setdefault("uid", str(uuid.uuid4()))
        with DRY_RUN_CLUSTER_LOCK:
            entries = (
                self._cluster_content.setdefault(namespace, {})
                .setdefault(kind, {})
                .setdefault(api_version, {})
            )
            entries[name] = resource
        return resource

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]


def _now() -> str:
    return (
        datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    ).replace("+00:00", "Z")


def _desired_state(resource: dict) -> dict:
    """Everything about a resource that counts towards its generation"""
    return {key: val for key, val in resource.items() if key not in _NON_SPEC_KEYS}


def _match_selector(values: dict, value_selector: str) -> bool:
    """Match a set of values against an equality based kubernetes selector
    such as "app=foo,tier!=backend". A bare key only requires existence.
    """
    for selector in value_selector.split(","):
        selector = selector.strip()
        if not selector:
            continue
        if "!=" in selector:
            key, expected = selector.split("!=", 1)
            if _value_str(values.get(key.strip())) == expected.strip():
                return False
        elif "=" in selector:
            key, expected = selector.replace("==", "=").split("=", 1)
            if _value_str(values.get(key.strip())) != expected.strip():
                return False
        elif selector.startswith("!"):
            if values.get(selector[1:].strip()) is not None:
                return False
        elif values.get(selector) is None:
            return False
    return True


def _value_str(value) -> Optional[str]:
    return str(value).strip() if value is not None else None


def _convert_dict_to_dot(dictionary, prefix=""):
    """Helper function to convert a dictionary to a map
    of strings dotted together. For example {a:{b:1},c:2}
    becomes {a.b:1,c:2}
    """
    if not isinstance(dictionary, dict):
        return {prefix: dictionary}

    output_dict = {}
    for key in dictionary:
        new_key = key if prefix == "" else f"{prefix}.{key}"
        output_dict = {**output_dict, **_convert_dict_to_dot(dictionary[key], new_key)}
    return output_dict
