"""
This module holds common functionality for managing ownerReferences on the
objects created on behalf of a CR
"""

# Standard
from typing import Optional

# First Party
import alog

log = alog.use_channel("OWNRF")


def make_owner_reference(owner_cr: dict, controller: bool = True) -> dict:
    """Make an owner reference for the given CR instance

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner_cr, so the resulting ownerReference may contain None
    entries.

    Args:
        owner_cr:  dict
            The full CR manifest for the owning resource
        controller:  bool
            Whether the owner is the managing controller of the child. At most
            one owner of an object may be its controller.

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": controller,
        # The parent will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }


def ensure_owner_reference(child_obj: dict, owner_reference: dict) -> bool:
    """Add the owner reference to the child object if needed. A reference to
    the same apiVersion/kind/name that differs (e.g. a stale uid) is replaced.

    Args:
        child_obj:  dict
            The object to mutate
        owner_reference:  dict
            The reference that must be present

    Returns:
        changed:  bool
            True if the child object was mutated
    """
    metadata = child_obj.setdefault("metadata", {})
    owner_refs = list(metadata.get("ownerReferences") or [])

    existing = _find_reference(owner_refs, owner_reference)
    if existing is not None and existing == owner_reference:
        return False

    if existing is None:
        log.debug2(
            "Adding owner reference to %s/%s",
            owner_reference.get("kind"),
            owner_reference.get("name"),
        )
        owner_refs.append(owner_reference)
    else:
        log.debug2(
            "Replacing conflicting owner reference to %s/%s",
            owner_reference.get("kind"),
            owner_reference.get("name"),
        )
        owner_refs = [owner_reference] + [
            ref for ref in owner_refs if not _same_owner(ref, owner_reference)
        ]
    metadata["ownerReferences"] = owner_refs
    return True


def set_controller_reference(owner_cr: dict, child_obj: dict) -> bool:
    """Make the given CR the controlling owner of the child object"""
    return ensure_owner_reference(child_obj, make_owner_reference(owner_cr))


## Implementation Details ######################################################


def _same_owner(ref_a: dict, ref_b: dict) -> bool:
    return all(
        ref_a.get(key) == ref_b.get(key) for key in ("apiVersion", "kind", "name")
    )


def _find_reference(owner_refs: list, owner_reference: dict) -> Optional[dict]:
    for ref in owner_refs:
        if _same_owner(ref, owner_reference):
            return ref
    return None
