"""
The convergence primitives used to bring a single child object to its desired
state: create it if missing, patch it in place if present, or delete it.
"""

# Standard
from typing import Callable, Iterable, Optional
import copy

# First Party
import alog

# Local
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import set_controller_reference
from .exceptions import assert_cluster
from .types import ResourceId

log = alog.use_channel("CONVG")

# A mutate function sets the fields it manages on an object in place
MutateFunction = Callable[[dict], None]


def create_or_update(
    deploy_manager: DeployManagerBase,
    obj: dict,
    owner: Optional[dict],
    mutate: MutateFunction,
) -> dict:
    """Converge a single object onto the state described by the mutate
    function. Errors from the cluster propagate unchanged.

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to talk to the cluster
        obj:  dict
            A manifest holding at least the apiVersion, kind, name and
            namespace of the object
        owner:  Optional[dict]
            The manifest of the CR which controls the object, if any
        mutate:  MutateFunction
            Idempotent function which sets the managed fields of the object

    Returns:
        current_state:  dict
            The state of the object in the cluster after convergence
    """
    res_id = ResourceId.from_resource(obj)
    log.debug2("Converging %s", res_id.get_named_id())

    success, current = deploy_manager.get_object_current_state(
        kind=res_id.kind,
        name=res_id.name,
        namespace=res_id.namespace,
        api_version=res_id.api_version,
    )
    assert_cluster(success, f"Failed to fetch current state of {res_id.get_named_id()}")

    if current is None:
        desired = copy.deepcopy(obj)
        _mutate_owned(desired, owner, mutate)
        log.debug("Creating %s", res_id.get_named_id())
        return deploy_manager.create(desired)

    desired = copy.deepcopy(current)
    _mutate_owned(desired, owner, mutate)
    if desired == current:
        log.debug3("No change to %s", res_id.get_named_id())
        return current

    log.debug("Updating %s", res_id.get_named_id())
    return deploy_manager.update(desired)


def delete_resource(deploy_manager: DeployManagerBase, obj: dict) -> bool:
    """Delete an object by identity. An object that does not exist counts as
    a success.

    Returns:
        changed:  bool
            True if the object existed and was removed
    """
    res_id = ResourceId.from_resource(obj)
    log.debug2("Deleting %s", res_id.get_named_id())
    success, changed = deploy_manager.disable([res_id.get_resource()])
    assert_cluster(success, f"Failed to delete {res_id.get_named_id()}")
    return changed


def delete_resources(deploy_manager: DeployManagerBase, objs: Iterable[dict]):
    """Delete each of the given objects, stopping at the first failure"""
    for obj in objs:
        delete_resource(deploy_manager, obj)


## Implementation Details ######################################################


def _mutate_owned(obj: dict, owner: Optional[dict], mutate: MutateFunction):
    if owner is not None:
        set_controller_reference(owner, obj)
    mutate(obj)
