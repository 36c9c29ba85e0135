"""
Wiring of the watch layer for the supported CR kinds: the field indexes are
registered and one handler is built for each kind of dependency watched
"""

# Standard
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

# First Party
import alog

# Local
from .. import constants
from ..application import APPLICATION_CLASSES
from ..capabilities import IMAGE_STREAM, is_kind_supported
from ..deploy_manager import DeployManagerBase
from ..op_config import watch_namespaces as configured_watch_namespaces
from ..types import ResourceId
from .handler import EnqueueRequestsForCustomIndexField
from .index import (
    BINDINGS_RESOURCE_REF_INDEX,
    IMAGE_STREAM_NAME_INDEX,
    FieldIndexer,
    index_application_image,
    index_binding_resource_ref,
)
from .matchers import BindingSecretMatcher, ImageStreamMatcher

log = alog.use_channel("WATCH")

## Public ######################################################################

SECRET = ResourceId(api_version=constants.CORE_API_VERSION, kind="Secret")


@dataclass
class Watch:
    """A kind to watch, optionally limited to a namespace, and the handler to
    call with its events
    """

    resource: ResourceId
    handler: EnqueueRequestsForCustomIndexField


def application_kinds() -> List[ResourceId]:
    """The identities of the supported CR kinds"""
    return [
        ResourceId(api_version=app_class.API_VERSION, kind=app_class.KIND)
        for app_class in APPLICATION_CLASSES
    ]


def setup(
    indexer: FieldIndexer,
    deploy_manager: DeployManagerBase,
    enqueue: Callable[[ResourceId], None],
    watch_namespaces: Optional[Sequence[str]] = None,
) -> List[Watch]:
    """Register the field indexes of every CR kind and build the watches which
    enqueue the CRs depending on a changed binding secret or image stream.
    Image streams are only watched when the cluster serves them.

    Args:
        indexer:  FieldIndexer
            The indexer to register the CR field indexes with
        deploy_manager:  DeployManagerBase
            The deploy manager used to look up the matching CRs
        enqueue:  Callable[[ResourceId], None]
            Called with the identity of every CR to reconcile
        watch_namespaces:  Optional[Sequence[str]]
            The watched namespaces. Defaults to the configured namespaces. A
            single empty entry means the whole cluster.

    Returns:
        watches:  List[Watch]
            The watches to register
    """
    namespaces = list(
        watch_namespaces
        if watch_namespaces is not None
        else configured_watch_namespaces()
    )
    kinds = application_kinds()
    for kind in kinds:
        indexer.register(
            kind.kind,
            kind.api_version,
            IMAGE_STREAM_NAME_INDEX,
            index_application_image,
        )
        indexer.register(
            kind.kind,
            kind.api_version,
            BINDINGS_RESOURCE_REF_INDEX,
            index_binding_resource_ref,
        )

    # A binding secret is always in the namespace of its CR
    secret_handler = EnqueueRequestsForCustomIndexField(
        BindingSecretMatcher(indexer, kinds), enqueue, deploy_manager
    )
    watches = [
        Watch(
            ResourceId(
                api_version=SECRET.api_version, kind=SECRET.kind, namespace=namespace
            ),
            secret_handler,
        )
        for namespace in namespaces
    ]

    # CRs may use image streams of any namespace
    if is_kind_supported(deploy_manager, IMAGE_STREAM):
        image_stream_handler = EnqueueRequestsForCustomIndexField(
            ImageStreamMatcher(indexer, namespaces, kinds), enqueue, deploy_manager
        )
        watches.append(Watch(IMAGE_STREAM, image_stream_handler))
    else:
        log.debug("Image streams are not served. Not watching them.")

    log.debug2("Built watches: %s", [watch.resource.get_id() for watch in watches])
    return watches
