"""
Matchers find the CRs that depend on a changed object
"""

# Standard
from typing import Iterable, List, Optional, Sequence

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import assert_cluster
from ..types import ResourceId
from .index import BINDINGS_RESOURCE_REF_INDEX, IMAGE_STREAM_NAME_INDEX, FieldIndexer

log = alog.use_channel("MATCH")

## Public ######################################################################

# Secret name suffix used to override the binding exposed by a CR
EXPOSE_BINDING_OVERRIDE_SECRET_SUFFIX = "-expose-binding-override"

DEFAULT_BINDING_SECRET_SUFFIXES = (
    constants.BINDING_SECRET_SUFFIX,
    EXPOSE_BINDING_OVERRIDE_SECRET_SUFFIX,
)


class ImageStreamMatcher:
    """Matches the CRs whose application image is served by an image stream"""

    def __init__(
        self,
        indexer: FieldIndexer,
        watch_namespaces: Sequence[str],
        kinds: Iterable[ResourceId],
    ):
        """
        Args:
            indexer:  FieldIndexer
                The indexer holding the image stream index of each kind
            watch_namespaces:  Sequence[str]
                The watched namespaces. A single empty entry means the whole
                cluster.
            kinds:  Iterable[ResourceId]
                The CR kinds to match
        """
        self.indexer = indexer
        self.watch_namespaces = list(watch_namespaces)
        self.kinds = list(kinds)

    def match(
        self, deploy_manager: DeployManagerBase, namespace: str, name: str
    ) -> List[ResourceId]:
        """Find the CRs using the image stream (or image stream tag) with the
        given namespace and name
        """
        image_stream = f"{namespace}/{name.split(':', 1)[0]}"
        matches = []
        for watch_namespace in self._namespaces(deploy_manager):
            for kind in self.kinds:
                for manifest in self.indexer.list_by_index(
                    deploy_manager,
                    kind=kind.kind,
                    api_version=kind.api_version,
                    namespace=watch_namespace,
                    field=IMAGE_STREAM_NAME_INDEX,
                    value=image_stream,
                ):
                    matches.append(ResourceId.from_resource(manifest))
        log.debug2("Image stream %s matched %s", image_stream, matches)
        return matches

    def _namespaces(self, deploy_manager: DeployManagerBase) -> List[str]:
        if self.watch_namespaces != [""]:
            return self.watch_namespaces
        success, namespaces = deploy_manager.filter_objects_current_state(
            kind="Namespace", api_version=constants.CORE_API_VERSION
        )
        assert_cluster(success, "Failed to list namespaces")
        return [ns["metadata"]["name"] for ns in namespaces]


class BindingSecretMatcher:
    """Matches the CRs which could rely on a secret as their binding secret"""

    def __init__(
        self,
        indexer: FieldIndexer,
        kinds: Iterable[ResourceId],
        suffixes: Optional[Sequence[str]] = None,
    ):
        self.indexer = indexer
        self.kinds = list(kinds)
        self.suffixes = list(
            suffixes if suffixes is not None else DEFAULT_BINDING_SECRET_SUFFIXES
        )

    def match(
        self, deploy_manager: DeployManagerBase, namespace: str, name: str
    ) -> List[ResourceId]:
        """Find the CRs which reference the secret by name, or whose name is
        the name of the secret without one of the binding suffixes. The same
        CR may be returned more than once.
        """
        matches = []
        for kind in self.kinds:
            for manifest in self.indexer.list_by_index(
                deploy_manager,
                kind=kind.kind,
                api_version=kind.api_version,
                namespace=namespace,
                field=BINDINGS_RESOURCE_REF_INDEX,
                value=name,
            ):
                matches.append(ResourceId.from_resource(manifest))

            for suffix in self.suffixes:
                if not name.endswith(suffix):
                    continue
                app_name = name[: -len(suffix)]
                success, manifest = deploy_manager.get_object_current_state(
                    kind=kind.kind,
                    name=app_name,
                    namespace=namespace,
                    api_version=kind.api_version,
                )
                assert_cluster(success, f"Failed to fetch {kind.kind} {app_name}")
                if manifest is not None:
                    matches.append(ResourceId.from_resource(manifest))
        log.debug2("Secret %s/%s matched %s", namespace, name, matches)
        return matches
