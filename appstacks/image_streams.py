"""
Resolution of the application image through OpenShift image streams. When the
application image names an image stream tag, the containers run the image the
tag currently points to, recorded in status.imageReference.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from . import constants
from .application import Application
from .capabilities import IMAGE_STREAM, is_kind_supported
from .deploy_manager import DeployManagerBase
from .exceptions import ResourceForbiddenError, assert_cluster
from .watch.index import parse_image_reference

log = alog.use_channel("IMGST")

## Public ######################################################################

IMAGE_STREAM_TAG_KIND = "ImageStreamTag"
DEFAULT_TAG = "latest"


def resolve_image_reference(
    deploy_manager: DeployManagerBase, app: Application
) -> Optional[str]:
    """Find the image the containers of the CR should run. This is the
    application image unless it names an image stream tag which points to an
    image.

    A missing tag, or one the operator may not read, leaves the application
    image in place.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to look up the image stream tag
        app:  Application
            The CR being reconciled

    Returns:
        image_reference:  Optional[str]
            The resolved image

    Raises:
        ClusterError: The image stream tag lookup failed
    """
    application_image = app.get_application_image()
    if not is_kind_supported(deploy_manager, IMAGE_STREAM):
        return application_image

    image = parse_image_reference(application_image)
    # Image stream names have no path segments
    if image is None or "/" in image.name:
        return application_image

    tag_name = f"{image.name}:{image.tag or DEFAULT_TAG}"
    tag_namespace = image.namespace or app.namespace
    try:
        success, image_stream_tag = deploy_manager.get_object_current_state(
            kind=IMAGE_STREAM_TAG_KIND,
            name=tag_name,
            namespace=tag_namespace,
            api_version=constants.IMAGE_API_VERSION,
        )
    except ResourceForbiddenError as err:
        # The namespace may not exist or not be watched
        log.debug("Not allowed to read %s/%s: %s", tag_namespace, tag_name, err)
        return application_image
    assert_cluster(
        success,
        f"Failed to fetch {IMAGE_STREAM_TAG_KIND} {tag_namespace}/{tag_name}",
    )
    if image_stream_tag is None:
        log.debug2("No %s %s/%s", IMAGE_STREAM_TAG_KIND, tag_namespace, tag_name)
        return application_image

    docker_image = (image_stream_tag.get("image") or {}).get("dockerImageReference")
    log.debug2(
        "Image stream tag %s/%s points to %s", tag_namespace, tag_name, docker_image
    )
    return docker_image or application_image
