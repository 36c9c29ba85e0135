"""
This module implements the service binding protocol between CRs:

* provides: A CR publishes the coordinates of its service as a secret named
  <namespace>-<name> in its own namespace.
* consumes: A CR copies the secret of every service it consumes into its own
  namespace. The provider secret records the namespaces it was copied to and
  the copy records the CRs that consume it, so the copies can be cleaned up
  when the provider stops publishing.
* external bindings: A CR is bound to a secret produced by a service binding
  operator, either explicitly by name or by probing the configured binding
  kinds.
"""

# Standard
from typing import Dict, Optional

# First Party
import alog

# Local
from . import constants
from .application import Application
from .convergence import create_or_update, delete_resource
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import (
    ensure_owner_reference,
    make_owner_reference,
)
from .exceptions import (
    AppstacksError,
    ClusterError,
    DependencyError,
    ResourceNotFoundError,
    assert_cluster,
)
from .op_config import OperatorConfig
from .status import manage_error, manage_success
from .types import ReconciliationResult
from .utils import (
    append_if_missing,
    build_binding_secret_name,
    decode_secret_value,
    encode_secret_data,
)

log = alog.use_channel("SVCBD")

## Public ######################################################################

DEPENDENCY_NOT_SATISFIED = "service binding dependency not satisfied"


@alog.logged_function(log.debug)
def provides(
    deploy_manager: DeployManagerBase, app: Application
) -> ReconciliationResult:
    """Publish or retract the binding secret for the service of the CR"""
    secret_name = build_binding_secret_name(app.name, app.namespace)
    provides_config = app.get_provides()
    try:
        if (
            provides_config is not None
            and provides_config.get("category")
            == constants.SERVICE_BINDING_CATEGORY_OPENAPI
        ):
            creds = _get_credentials(deploy_manager, app, provides_config)
            data = {
                "hostname": f"{app.name}.{app.namespace}.svc.cluster.local",
                "protocol": provides_config.get("protocol") or "http",
                "port": str(app.get_service_port()),
                "context": "/" + (provides_config.get("context") or "").strip("/"),
            }
            data.update(creds)

            def mutate(secret: dict):
                secret["metadata"]["labels"] = app.get_labels()
                secret["data"] = encode_secret_data(data)

            create_or_update(
                deploy_manager,
                _secret(secret_name, app.namespace),
                app.to_dict(),
                mutate,
            )
        else:
            _retract(deploy_manager, app, secret_name)
    except AppstacksError as err:
        log.debug("Failed to reconcile provider secret %s: %s", secret_name, err)
        return requeue_error(deploy_manager, app, err)

    return manage_success(
        deploy_manager, constants.DEPENDENCIES_SATISFIED_CONDITION, app
    )


@alog.logged_function(log.debug)
def consumes(
    deploy_manager: DeployManagerBase, app: Application
) -> ReconciliationResult:
    """Copy the binding secrets of all consumed services into the namespace of
    the CR and record them in the status
    """
    copied_to_key = constants.COPIED_TO_NAMESPACES_ANNOTATION_TEMPLATE.format(
        group=app.group
    )
    consumed_by_key = constants.CONSUMED_BY_ANNOTATION_TEMPLATE.format(group=app.group)

    for consume in app.get_consumes():
        if consume.get("category") != constants.SERVICE_BINDING_CATEGORY_OPENAPI:
            continue
        provider_namespace = consume.get("namespace") or app.namespace
        secret_name = build_binding_secret_name(consume.get("name"), provider_namespace)
        log.debug2("Consuming %s from %s", secret_name, provider_namespace)

        try:
            provider_secret = _get_secret(
                deploy_manager, secret_name, provider_namespace
            )
            if provider_secret is None:
                delete_resource(deploy_manager, _secret(secret_name, app.namespace))
                raise DependencyError(
                    f"{DEPENDENCY_NOT_SATISFIED}: unable to find service binding "
                    f'secret "{secret_name}" for service "{consume.get("name")}" '
                    f'in namespace "{provider_namespace}"'
                )

            # Record the copy on the provider so that it can be cleaned up
            annotations = provider_secret["metadata"].setdefault("annotations", {})
            copied_to = append_if_missing(app.namespace, annotations.get(copied_to_key))
            if annotations.get(copied_to_key) != copied_to:
                annotations[copied_to_key] = copied_to
                provider_secret = deploy_manager.update(provider_secret)

            _sync_copy(
                deploy_manager,
                app,
                provider_secret,
                provider_namespace,
                consumed_by_key,
            )

            consumed = app.get_consumed_services().setdefault(
                constants.SERVICE_BINDING_CATEGORY_OPENAPI, []
            )
            if secret_name not in consumed:
                consumed.append(secret_name)
                assert_cluster(
                    app.update_status(deploy_manager),
                    "unable to update status with service binding secret information",
                )
        except AppstacksError as err:
            return requeue_error(deploy_manager, app, err)

    return manage_success(
        deploy_manager, constants.DEPENDENCIES_SATISFIED_CONDITION, app
    )


@alog.logged_function(log.debug)
def external_bindings(
    deploy_manager: DeployManagerBase,
    app: Application,
    op_config: OperatorConfig,
) -> ReconciliationResult:
    """Resolve the secret produced for the CR by a service binding operator"""
    resolved = []
    resource_ref = app.get_binding_resource_ref()
    try:
        if resource_ref:
            if _get_secret(deploy_manager, resource_ref, app.namespace) is None:
                raise DependencyError(
                    f"{DEPENDENCY_NOT_SATISFIED}: unable to find service binding "
                    f'secret for external binding "{resource_ref}" in namespace '
                    f'"{app.namespace}"'
                )
            resolved.append(resource_ref)

        elif app.get_binding_auto_detect():
            for binding_kind in op_config.binding_kinds:
                if not _binding_exists(deploy_manager, app, binding_kind):
                    continue
                success, secret = deploy_manager.get_object_current_state(
                    kind="Secret",
                    name=app.name,
                    namespace=app.namespace,
                    api_version=constants.CORE_API_VERSION,
                )
                if success and secret is not None:
                    resolved.append(app.name)
                    break
                if success:
                    raise DependencyError(
                        f"{DEPENDENCY_NOT_SATISFIED}: unable to find service binding "
                        f'secret for external binding "{app.name}" in namespace '
                        f'"{app.namespace}"'
                    )

        resolved.sort()
        if resolved != app.get_resolved_bindings():
            log.debug("Resolved bindings for %s: %s", app.name, resolved)
            app.set_resolved_bindings(resolved)
            assert_cluster(
                app.update_status(deploy_manager),
                "unable to update status with resolved service binding information",
            )
    except AppstacksError as err:
        return requeue_error(deploy_manager, app, err)

    return manage_success(
        deploy_manager, constants.DEPENDENCIES_SATISFIED_CONDITION, app
    )


def get_resolved_binding_secret(
    deploy_manager: DeployManagerBase, app: Application
) -> Optional[dict]:
    """Get the secret of the first resolved binding of the CR

    Returns:
        secret:  Optional[dict]
            The binding secret, or None if no binding is resolved

    Raises:
        ClusterError: The resolved secret does not exist
    """
    resolved = app.get_resolved_bindings()
    if not resolved:
        return None
    secret = _get_secret(deploy_manager, resolved[0], app.namespace)
    if secret is None:
        raise ResourceNotFoundError(
            f'secrets "{resolved[0]}" not found in namespace "{app.namespace}"'
        )
    return secret


def requeue_error(
    deploy_manager: DeployManagerBase,
    app: Application,
    err: Exception,
) -> ReconciliationResult:
    """Record an unsatisfied dependency on both conditions"""
    manage_error(
        deploy_manager, err, constants.DEPENDENCIES_SATISFIED_CONDITION, app
    )
    return manage_error(
        deploy_manager,
        DependencyError("dependency not satisfied"),
        constants.RECONCILED_CONDITION,
        app,
    )


## Implementation Details ######################################################


def _secret(name: str, namespace: str) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "type": "Opaque",
    }


def _get_secret(
    deploy_manager: DeployManagerBase, name: str, namespace: str
) -> Optional[dict]:
    success, secret = deploy_manager.get_object_current_state(
        kind="Secret",
        name=name,
        namespace=namespace,
        api_version=constants.CORE_API_VERSION,
    )
    assert_cluster(success, f"Failed to fetch secret {namespace}/{name}")
    return secret


def _get_credentials(
    deploy_manager: DeployManagerBase, app: Application, provides_config: dict
) -> Dict[str, str]:
    """Read the username and password of the provided service out of the
    secrets referenced by the CR
    """
    creds = {}
    auth = provides_config.get("auth") or {}
    for cred in ("username", "password"):
        selector = auth.get(cred)
        if not selector:
            continue
        secret = _get_secret(deploy_manager, selector.get("name"), app.namespace)
        if secret is None:
            raise DependencyError(
                f'unable to fetch credential "{cred}" from secret '
                f'"{selector.get("name")}"'
            )
        value = decode_secret_value(secret, selector.get("key"))
        if value is None:
            raise DependencyError(
                f'unable to find credential "{cred}" in secret '
                f'"{selector.get("name")}" using key "{selector.get("key")}"'
            )
        creds[cred] = value
    return creds


def _retract(deploy_manager: DeployManagerBase, app: Application, secret_name: str):
    """Delete the provider secret and all of its copies"""
    provider_secret = _get_secret(deploy_manager, secret_name, app.namespace)
    if provider_secret is None:
        log.debug4("Unable to find secret %s in %s", secret_name, app.namespace)
        return

    copied_to_key = constants.COPIED_TO_NAMESPACES_ANNOTATION_TEMPLATE.format(
        group=app.group
    )
    annotations = provider_secret.get("metadata", {}).get("annotations") or {}
    for namespace in (annotations.get(copied_to_key) or "").split(","):
        if namespace:
            delete_resource(deploy_manager, _secret(secret_name, namespace))
    delete_resource(deploy_manager, _secret(secret_name, app.namespace))


def _sync_copy(
    deploy_manager: DeployManagerBase,
    app: Application,
    provider_secret: dict,
    provider_namespace: str,
    consumed_by_key: str,
):
    """Create or refresh the copy of a provider secret in the CR namespace"""
    secret_name = provider_secret["metadata"]["name"]
    owner_reference = make_owner_reference(app.to_dict(), controller=False)
    current = _get_secret(deploy_manager, secret_name, app.namespace)

    if current is None:
        copy_secret = _secret(secret_name, app.namespace)
        copy_secret["metadata"]["labels"] = dict(
            provider_secret["metadata"].get("labels") or {}
        )
        copy_secret["metadata"]["annotations"] = {consumed_by_key: app.name}
        if provider_namespace != app.namespace:
            copy_secret["metadata"]["ownerReferences"] = [owner_reference]
        copy_secret["data"] = dict(provider_secret.get("data") or {})
        deploy_manager.create(copy_secret)
        return

    updated = {**current, "metadata": dict(current["metadata"])}
    annotations = dict(updated["metadata"].get("annotations") or {})
    annotations[consumed_by_key] = append_if_missing(
        app.name, annotations.get(consumed_by_key)
    )
    updated["metadata"]["annotations"] = annotations
    updated["data"] = dict(provider_secret.get("data") or {})
    if provider_namespace != app.namespace:
        ensure_owner_reference(updated, owner_reference)
    if updated != current:
        log.debug2("Updating copy of %s in %s", secret_name, app.namespace)
        deploy_manager.update(updated)


def _binding_exists(
    deploy_manager: DeployManagerBase,
    app: Application,
    binding_kind: "ResourceId",  # noqa: F821
) -> bool:
    """Check for a binding object of the given kind named after the CR"""
    try:
        success, binding = deploy_manager.get_object_current_state(
            kind=binding_kind.kind,
            name=app.name,
            namespace=app.namespace,
            api_version=binding_kind.api_version,
        )
    except ClusterError as err:
        log.warning(
            "Failed to find a service binding resource during auto-detect for %s: %s",
            binding_kind.global_id,
            err,
        )
        return False
    return success and binding is not None
