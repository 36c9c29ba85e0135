"""
Event handler which turns watch events on dependencies into reconcile
requests for the CRs that depend on them
"""

# Standard
from typing import Callable, List

# First Party
import alog

# Local
from ..deploy_manager import DeployManagerBase, KubeEventType, KubeWatchEvent
from ..exceptions import AppstacksError
from ..types import ResourceId

log = alog.use_channel("HNDLR")


class EnqueueRequestsForCustomIndexField:
    """Enqueue a reconcile request for every CR matched by the matcher"""

    def __init__(
        self,
        matcher: "ImageStreamMatcher | BindingSecretMatcher",
        enqueue: Callable[[ResourceId], None],
        deploy_manager: DeployManagerBase,
    ):
        self.matcher = matcher
        self.enqueue = enqueue
        self.deploy_manager = deploy_manager

    def __call__(self, event: KubeWatchEvent):
        self.handle(event)

    def handle(self, event: KubeWatchEvent) -> List[ResourceId]:
        """Handle a single watch event

        Returns:
            requests:  List[ResourceId]
                The requests that were enqueued
        """
        resources = [event.resource]
        if event.type == KubeEventType.MODIFIED and event.old_resource is not None:
            resources.insert(0, event.old_resource)

        requests = []
        for resource in resources:
            metadata = resource.get("metadata", {})
            try:
                matches = self.matcher.match(
                    self.deploy_manager, metadata.get("namespace"), metadata.get("name")
                )
            except AppstacksError as err:
                log.warning(
                    "Failed to match %s event for %s/%s: %s",
                    event.type.value,
                    metadata.get("namespace"),
                    metadata.get("name"),
                    err,
                )
                continue
            for request in matches:
                log.debug2("Enqueueing %s", request.get_named_id())
                self.enqueue(request)
                requests.append(request)
        return requests
