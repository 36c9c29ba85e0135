"""
Tests for the resolution of the application image through image streams
"""

# Third Party
import pytest

# Local
from appstacks import constants
from appstacks.application import RuntimeComponent
from appstacks.exceptions import ClusterError, ResourceForbiddenError
from appstacks.image_streams import resolve_image_reference
from appstacks.op_config import OperatorConfig
from appstacks.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    MockDeployManager,
    setup_cr,
)

## Helpers #####################################################################

IMAGE_STREAMS_SERVED = {constants.IMAGE_API_VERSION: ["ImageStream"]}
RESOLVED = "image-registry.svc:5000/test/my-image@sha256:abc"


def make_app(image):
    app = RuntimeComponent(setup_cr(spec={"applicationImage": image}))
    app.initialize(OperatorConfig())
    return app


def image_stream_tag(name, namespace=TEST_NAMESPACE, docker_image=RESOLVED):
    return {
        "apiVersion": constants.IMAGE_API_VERSION,
        "kind": "ImageStreamTag",
        "metadata": {"name": name, "namespace": namespace},
        "image": {"dockerImageReference": docker_image},
    }


## Tests #######################################################################


def test_image_streams_not_served():
    """Make sure the application image is used as-is without image streams"""
    dm = MockDeployManager()
    assert resolve_image_reference(dm, make_app("my-image")) == "my-image"
    assert not dm.get_object_current_state.called


@pytest.mark.parametrize(
    ["image", "tag_name", "namespace"],
    [
        ("my-image", "my-image:latest", TEST_NAMESPACE),
        ("my-image:1.0", "my-image:1.0", TEST_NAMESPACE),
        (f"{SOME_OTHER_NAMESPACE}/my-image:2", "my-image:2", SOME_OTHER_NAMESPACE),
    ],
)
def test_image_stream_tag_resolved(image, tag_name, namespace):
    """Make sure the tag is looked up in the namespace named by the image, or
    the namespace of the CR
    """
    dm = MockDeployManager(
        resources=[image_stream_tag(tag_name, namespace)],
        api_resources=IMAGE_STREAMS_SERVED,
    )
    assert resolve_image_reference(dm, make_app(image)) == RESOLVED


def test_image_stream_tag_missing():
    """Make sure a missing tag keeps the application image"""
    dm = MockDeployManager(api_resources=IMAGE_STREAMS_SERVED)
    assert resolve_image_reference(dm, make_app("my-image:1.0")) == "my-image:1.0"


def test_image_stream_tag_without_image():
    """Make sure a tag which points to no image keeps the application image"""
    tag = image_stream_tag("my-image:latest", docker_image="")
    dm = MockDeployManager(resources=[tag], api_resources=IMAGE_STREAMS_SERVED)
    assert resolve_image_reference(dm, make_app("my-image")) == "my-image"


def test_image_stream_tag_forbidden():
    """Make sure a forbidden lookup keeps the application image"""
    dm = MockDeployManager(
        api_resources=IMAGE_STREAMS_SERVED,
        get_state_fail=ResourceForbiddenError("imagestreamtags is forbidden"),
    )
    assert resolve_image_reference(dm, make_app("my-image")) == "my-image"


def test_image_stream_tag_lookup_error():
    """Make sure other lookup failures raise"""
    dm = MockDeployManager(api_resources=IMAGE_STREAMS_SERVED, get_state_fail=True)
    with pytest.raises(ClusterError):
        resolve_image_reference(dm, make_app("my-image"))


def test_image_with_path_not_looked_up():
    """Make sure images which cannot name an image stream are used as-is"""
    dm = MockDeployManager(api_resources=IMAGE_STREAMS_SERVED)
    image = "registry.io/a/b/c:2"
    assert resolve_image_reference(dm, make_app(image)) == image
    assert not dm.get_object_current_state.called
