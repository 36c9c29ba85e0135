"""
Tests for the client-side field indexes
"""

# Third Party
import pytest

# Local
from appstacks.test_helpers.helpers import (
    SOME_OTHER_NAMESPACE,
    TEST_NAMESPACE,
    MockDeployManager,
    setup_cr,
)
from appstacks.watch.index import (
    BINDINGS_RESOURCE_REF_INDEX,
    IMAGE_STREAM_NAME_INDEX,
    FieldIndexer,
    ImageReference,
    index_application_image,
    index_binding_resource_ref,
    parse_image_reference,
)

## Helpers #####################################################################

KIND = "RuntimeComponent"
API_VERSION = "app.stacks/v1beta1"


def make_indexer():
    indexer = FieldIndexer()
    indexer.register(
        KIND, API_VERSION, IMAGE_STREAM_NAME_INDEX, index_application_image
    )
    return indexer


## parse_image_reference #######################################################


@pytest.mark.parametrize(
    ["spec", "expected"],
    [
        ("my-image", ImageReference(name="my-image")),
        ("my-image:1.0", ImageReference(name="my-image", tag="1.0")),
        ("team/my-image", ImageReference(namespace="team", name="my-image")),
        (
            "quay.io/my-image:latest",
            ImageReference(registry="quay.io", name="my-image", tag="latest"),
        ),
        (
            "localhost:5000/team/my-image:1.0",
            ImageReference(
                registry="localhost:5000", namespace="team", name="my-image", tag="1.0"
            ),
        ),
        (
            "localhost/my-image",
            ImageReference(registry="localhost", name="my-image"),
        ),
        (
            "team/my-image@sha256:abc",
            ImageReference(namespace="team", name="my-image", id="sha256:abc"),
        ),
        (
            "registry.io/a/b/c:2",
            ImageReference(registry="registry.io", namespace="a", name="b/c", tag="2"),
        ),
    ],
)
def test_parse_image_reference(spec, expected):
    """Make sure image references are split into their parts"""
    assert parse_image_reference(spec) == expected


@pytest.mark.parametrize("spec", ["", None, "team/", ":tag"])
def test_parse_image_reference_invalid(spec):
    """Make sure references without a name are rejected"""
    assert parse_image_reference(spec) is None


## Index functions #############################################################


def test_index_application_image():
    """Make sure CRs are indexed by the namespaced image stream name"""
    cr = setup_cr(spec={"applicationImage": "my-image:1.0"})
    assert index_application_image(cr) == [f"{TEST_NAMESPACE}/my-image"]
    cr = setup_cr(spec={"applicationImage": "team/my-image"})
    assert index_application_image(cr) == ["team/my-image"]
    cr = setup_cr(spec={"applicationImage": ""})
    assert index_application_image(cr) == []


def test_index_binding_resource_ref():
    """Make sure CRs are indexed by their binding reference"""
    cr = setup_cr(spec={"bindings": {"resourceRef": "my-binding"}})
    assert index_binding_resource_ref(cr) == ["my-binding"]
    assert index_binding_resource_ref(setup_cr()) == []


## FieldIndexer ################################################################


def test_list_by_index():
    """Make sure only the CRs of the namespace indexed under the value are
    listed
    """
    dm = MockDeployManager(
        resources=[
            setup_cr(name="a", spec={"applicationImage": "my-image"}),
            setup_cr(name="b", spec={"applicationImage": "other-image"}),
            setup_cr(
                name="c",
                namespace=SOME_OTHER_NAMESPACE,
                spec={"applicationImage": f"{TEST_NAMESPACE}/my-image"},
            ),
        ]
    )
    matches = make_indexer().list_by_index(
        dm,
        kind=KIND,
        api_version=API_VERSION,
        namespace=TEST_NAMESPACE,
        field=IMAGE_STREAM_NAME_INDEX,
        value=f"{TEST_NAMESPACE}/my-image",
    )
    assert [match["metadata"]["name"] for match in matches] == ["a"]


def test_list_by_index_unregistered():
    """Make sure looking up an unregistered index fails"""
    with pytest.raises(ValueError):
        make_indexer().list_by_index(
            MockDeployManager(),
            kind=KIND,
            api_version=API_VERSION,
            namespace=TEST_NAMESPACE,
            field=BINDINGS_RESOURCE_REF_INDEX,
            value="x",
        )
