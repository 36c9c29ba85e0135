"""
Tests for the owner reference helpers
"""

# Standard
import copy

# First Party
import alog

# Local
from appstacks.deploy_manager.owner_references import (
    ensure_owner_reference,
    make_owner_reference,
    set_controller_reference,
)
from appstacks.test_helpers.helpers import TEST_NAMESPACE

## Helpers #####################################################################

log = alog.use_channel("TEST")

SAMPLE_OWNER = {
    "kind": "Owner",
    "apiVersion": "foo.bar.com/v1",
    "metadata": {
        "name": "owner",
        "namespace": TEST_NAMESPACE,
        "uid": "12345",
    },
}


def sample_object(namespace=TEST_NAMESPACE):
    return {
        "kind": "Child",
        "apiVersion": "foo.bar.com/v1",
        "metadata": {
            "name": "child",
            "namespace": namespace,
            "uid": "54321",
        },
    }


## Tests #######################################################################


def test_make_owner_reference():
    """Make sure the reference points at the owner and blocks its deletion"""
    ref = make_owner_reference(SAMPLE_OWNER)
    assert ref == {
        "apiVersion": "foo.bar.com/v1",
        "kind": "Owner",
        "name": "owner",
        "uid": "12345",
        "controller": True,
        "blockOwnerDeletion": True,
    }
    assert not make_owner_reference(SAMPLE_OWNER, controller=False)["controller"]


def test_add_new_owner_ref():
    """Test that adding a ref to an object with none present adds as expected"""
    obj = sample_object()
    assert set_controller_reference(SAMPLE_OWNER, obj)
    assert obj["metadata"]["ownerReferences"] == [make_owner_reference(SAMPLE_OWNER)]


def test_no_duplicate():
    """Test that an object with an existing ref for the owner does not
    duplicate the existing ref
    """
    obj = sample_object()
    obj["metadata"]["ownerReferences"] = [make_owner_reference(SAMPLE_OWNER)]
    assert not set_controller_reference(SAMPLE_OWNER, obj)
    assert obj["metadata"]["ownerReferences"] == [make_owner_reference(SAMPLE_OWNER)]


def test_external_preserved():
    """Test that an object with an existing ref for a different owner adds the
    new reference without removing the old one
    """
    external_owner = copy.deepcopy(SAMPLE_OWNER)
    external_owner["metadata"]["name"] = "other-owner"
    external_ref = make_owner_reference(external_owner, controller=False)
    obj = sample_object()
    obj["metadata"]["ownerReferences"] = [external_ref]
    ensure_owner_reference(obj, make_owner_reference(SAMPLE_OWNER))
    assert obj["metadata"]["ownerReferences"] == [
        external_ref,
        make_owner_reference(SAMPLE_OWNER),
    ]


def test_stale_reference_replaced():
    """Test that a reference to the same owner with a stale uid is replaced"""
    stale_owner = copy.deepcopy(SAMPLE_OWNER)
    stale_owner["metadata"]["uid"] = "old"
    obj = sample_object()
    obj["metadata"]["ownerReferences"] = [make_owner_reference(stale_owner)]
    assert set_controller_reference(SAMPLE_OWNER, obj)
    assert obj["metadata"]["ownerReferences"] == [make_owner_reference(SAMPLE_OWNER)]
