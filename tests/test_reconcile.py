"""
Tests for the full reconcile of a CR
"""

# Standard
from unittest import mock

# Third Party
import pytest

# First Party
import alog

# Local
from appstacks import constants
from appstacks.application import RuntimeComponent
from appstacks.capabilities import INGRESS, KNATIVE_SERVICE, ROUTE
from appstacks.deploy_manager import DryRunDeployManager
from appstacks.exceptions import (
    DependencyError,
    PreconditionError,
    ResourceForbiddenError,
    ValidationError,
)
from appstacks.reconcile import (
    BINDING_NOT_SUPPORTED_MESSAGE,
    KNATIVE_NOT_SUPPORTED_MESSAGE,
    ReconcileManager,
)
from appstacks.service_binding import DEPENDENCY_NOT_SATISFIED
from appstacks.test_helpers.helpers import (
    OPERATOR_NAMESPACE,
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    MockDeployManager,
    library_config,
    make_secret,
    setup_cr,
)
from appstacks.types import ResourceId

log = alog.use_channel("TEST")

## Helpers #####################################################################

REQUEST = ResourceId(
    api_version="app.stacks/v1beta1",
    kind="RuntimeComponent",
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
)
RECONCILED = constants.RECONCILED_CONDITION


def run_reconcile(spec=None, api_resources=None, resources=None, **kwargs):
    """Reconcile a CR with the given spec against a fresh cluster"""
    cr = setup_cr(spec=spec, **kwargs)
    dm = MockDeployManager(
        resources=[cr] + (resources or []), api_resources=api_resources
    )
    result = ReconcileManager(deploy_manager=dm).reconcile(REQUEST)
    return dm, result


def get_child(dm, kind, api_version=None):
    return dm.get_obj(kind, TEST_INSTANCE_NAME, api_version=api_version)


def served(*res_ids):
    api_resources = {}
    for res_id in res_ids:
        api_resources.setdefault(res_id.api_version, []).append(res_id.kind)
    return api_resources


def image_stream_tag(name, docker_image_reference, namespace=TEST_NAMESPACE):
    return {
        "apiVersion": constants.IMAGE_API_VERSION,
        "kind": "ImageStreamTag",
        "metadata": {"name": name, "namespace": namespace},
        "image": {"dockerImageReference": docker_image_reference},
    }


def get_container(dm, kind="Deployment"):
    return get_child(dm, kind)["spec"]["template"]["spec"]["containers"][0]


## Workloads ###################################################################


def test_reconcile_stateful():
    """Make sure a CR with storage converges to a StatefulSet behind a headless
    service
    """
    dm, result = run_reconcile(
        {"storage": {"size": "10Mi"}, "replicas": 3, "applicationImage": "my-image"}
    )
    assert not result.requeue
    assert result.exception is None

    stateful_set = get_child(dm, "StatefulSet")
    assert stateful_set["spec"]["replicas"] == 3
    container = stateful_set["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "my-image"
    headless = dm.get_obj("Service", f"{TEST_INSTANCE_NAME}-headless")
    assert headless["spec"]["clusterIP"] == "None"
    assert get_child(dm, "Service") is not None
    assert get_child(dm, "ServiceAccount") is not None
    assert get_child(dm, "Deployment") is None

    owner_refs = stateful_set["metadata"]["ownerReferences"]
    assert [ref["name"] for ref in owner_refs] == [TEST_INSTANCE_NAME]
    assert dm.get_condition(RECONCILED)["status"] == "True"


def test_reconcile_deployment():
    """Make sure a CR without storage converges to a Deployment"""
    dm, result = run_reconcile({"replicas": 2})
    assert not result.requeue
    assert get_child(dm, "Deployment")["spec"]["replicas"] == 2
    assert get_child(dm, "StatefulSet") is None
    assert dm.get_obj("Service", f"{TEST_INSTANCE_NAME}-headless") is None


def test_reconcile_switch_to_deployment():
    """Make sure removing storage replaces the StatefulSet with a Deployment"""
    cr = setup_cr(spec={"storage": {"size": "10Mi"}})
    dm = MockDeployManager(resources=[cr])
    manager = ReconcileManager(deploy_manager=dm)
    manager.reconcile(REQUEST)
    assert get_child(dm, "StatefulSet") is not None

    current = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)
    del current["spec"]["storage"]
    dm.update(current)
    assert not manager.reconcile(REQUEST).requeue
    assert get_child(dm, "StatefulSet") is None
    assert get_child(dm, "Deployment") is not None


def test_reconcile_idempotent():
    """Make sure a second reconcile of an unchanged CR writes no children"""
    dm, _ = run_reconcile({"storage": {"size": "10Mi"}})
    versions = {
        kind: get_child(dm, kind)["metadata"]["resourceVersion"]
        for kind in ("StatefulSet", "Service", "ServiceAccount")
    }
    dm.create.reset_mock()
    dm.update.reset_mock()

    result = ReconcileManager(deploy_manager=dm).reconcile(REQUEST)
    assert not result.requeue
    assert not dm.create.called
    assert not dm.update.called
    for kind, version in versions.items():
        assert get_child(dm, kind)["metadata"]["resourceVersion"] == version


def test_reconcile_keeps_server_defaults():
    """Make sure fields defaulted by the cluster on the pod template are kept
    and do not cause an update on the next reconcile
    """
    dm, _ = run_reconcile({"replicas": 2})
    deployment = get_child(dm, "Deployment")
    template = deployment["spec"]["template"]
    template["metadata"]["annotations"] = {
        "kubectl.kubernetes.io/restartedAt": "2021-06-01T00:00:00Z"
    }
    template["spec"]["restartPolicy"] = "Always"
    template["spec"]["containers"][0]["terminationMessagePath"] = "/dev/termination-log"
    template["spec"]["containers"][0]["ports"][0]["hostPort"] = 0
    version = dm.update(deployment)["metadata"]["resourceVersion"]
    dm.update.reset_mock()

    result = ReconcileManager(deploy_manager=dm).reconcile(REQUEST)
    assert not result.requeue
    assert not dm.update.called
    current = get_child(dm, "Deployment")
    assert current["metadata"]["resourceVersion"] == version
    assert current["spec"]["template"] == template


def test_reconcile_updates_managed_fields_in_place():
    """Make sure a CR change updates the container without dropping the
    fields defaulted by the cluster
    """
    cr = setup_cr(spec={"replicas": 2})
    dm = MockDeployManager(resources=[cr])
    manager = ReconcileManager(deploy_manager=dm)
    manager.reconcile(REQUEST)
    deployment = get_child(dm, "Deployment")
    deployment["spec"]["template"]["spec"]["restartPolicy"] = "Always"
    dm.update(deployment)

    current = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)
    current["spec"]["applicationImage"] = "my-image:2.0"
    current["spec"]["env"] = [{"name": "FOO", "value": "bar"}]
    dm.update(current)
    manager.reconcile(REQUEST)

    pod_spec = get_child(dm, "Deployment")["spec"]["template"]["spec"]
    assert pod_spec["restartPolicy"] == "Always"
    assert len(pod_spec["containers"]) == 1
    assert pod_spec["containers"][0]["image"] == "my-image:2.0"
    assert pod_spec["containers"][0]["env"] == [{"name": "FOO", "value": "bar"}]


def test_reconcile_autoscaler():
    """Make sure the autoscaler follows the autoscaling settings"""
    dm, _ = run_reconcile({"autoscaling": {"maxReplicas": 4}})
    assert get_child(dm, "HorizontalPodAutoscaler")["spec"]["maxReplicas"] == 4
    assert "replicas" not in get_child(dm, "Deployment")["spec"]


## Defaults ####################################################################


def test_reconcile_writes_defaults():
    """Make sure the defaults are persisted on the CR"""
    dm, _ = run_reconcile()
    spec = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)["spec"]
    assert spec["pullPolicy"] == "IfNotPresent"
    assert spec["service"]["port"] == 8080


def test_reconcile_first_generation_stops():
    """Make sure the first generation stops after writing the defaults"""
    dm, result = run_reconcile({"storage": {"size": "10Mi"}}, generation=1)
    assert not result.requeue
    assert dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)["spec"]["pullPolicy"]
    assert get_child(dm, "StatefulSet") is None
    assert dm.get_condition(RECONCILED) == {}


def test_reconcile_invalid_is_terminal():
    """Make sure an invalid CR is reported and not requeued"""
    dm, result = run_reconcile({"storage": {"size": "ten"}})
    assert not result.requeue
    assert isinstance(result.exception, ValidationError)
    cond = dm.get_condition(RECONCILED)
    assert cond["status"] == "False"
    assert "cannot parse" in cond["message"]
    assert get_child(dm, "StatefulSet") is None


def test_reconcile_not_found():
    """Make sure a deleted CR ends the reconcile"""
    result = ReconcileManager(deploy_manager=MockDeployManager()).reconcile(REQUEST)
    assert not result.requeue
    assert result.exception is None


def test_reconcile_config_map_write_failure():
    """Make sure a failed write of the operator ConfigMap does not stop the
    reconcile of the CR
    """
    dm = MockDeployManager(resources=[setup_cr()])

    def create(resource_definition):
        if resource_definition["kind"] == "ConfigMap":
            raise ResourceForbiddenError("configmaps is forbidden")
        return DryRunDeployManager.create(dm, resource_definition)

    dm.create = mock.Mock(side_effect=create)
    result = ReconcileManager(deploy_manager=dm).safe_reconcile(REQUEST)
    assert not result.requeue
    assert result.exception is None
    assert get_child(dm, "Service") is not None
    assert get_child(dm, "Deployment") is not None
    assert dm.get_condition(RECONCILED)["status"] == "True"
    assert not dm.has_obj(
        "ConfigMap", "runtime-component-operator", OPERATOR_NAMESPACE
    )


## Knative #####################################################################


def test_reconcile_knative():
    """Make sure a Knative service replaces the workload"""
    dm, result = run_reconcile(
        {"createKnativeService": True}, api_resources=served(KNATIVE_SERVICE)
    )
    assert not result.requeue
    knative = get_child(dm, "Service", KNATIVE_SERVICE.api_version)
    container = knative["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "my-image"
    assert get_child(dm, "Service", constants.CORE_API_VERSION) is None
    assert get_child(dm, "Deployment") is None


def test_reconcile_knative_removed():
    """Make sure turning Knative off removes the Knative service"""
    cr = setup_cr(spec={"createKnativeService": True})
    dm = MockDeployManager(resources=[cr], api_resources=served(KNATIVE_SERVICE))
    manager = ReconcileManager(deploy_manager=dm)
    manager.reconcile(REQUEST)
    assert get_child(dm, "Service", KNATIVE_SERVICE.api_version) is not None

    current = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)
    current["spec"]["createKnativeService"] = False
    dm.update(current)
    manager.reconcile(REQUEST)
    assert get_child(dm, "Service", KNATIVE_SERVICE.api_version) is None
    assert get_child(dm, "Deployment") is not None


def test_reconcile_knative_not_installed():
    """Make sure requesting Knative without Knative fails the precondition"""
    dm, result = run_reconcile({"createKnativeService": True})
    assert result.requeue
    assert isinstance(result.exception, PreconditionError)
    cond = dm.get_condition(RECONCILED)
    assert cond["status"] == "False"
    assert cond["message"] == KNATIVE_NOT_SUPPORTED_MESSAGE


## Exposure ####################################################################


@pytest.mark.parametrize(
    ["api_resources", "expected", "absent"],
    [
        (served(ROUTE), ROUTE, INGRESS),
        (served(INGRESS), INGRESS, ROUTE),
        (served(ROUTE, INGRESS), ROUTE, INGRESS),
    ],
)
def test_reconcile_exposure(api_resources, expected, absent):
    """Make sure a Route is preferred over an Ingress"""
    dm, _ = run_reconcile(
        {"expose": True, "route": {"host": "example.com"}},
        api_resources=api_resources,
    )
    assert get_child(dm, expected.kind, expected.api_version) is not None
    assert get_child(dm, absent.kind, absent.api_version) is None


def test_reconcile_not_exposed():
    """Make sure an unexposed CR has no Route"""
    dm, _ = run_reconcile(api_resources=served(ROUTE))
    assert get_child(dm, ROUTE.kind, ROUTE.api_version) is None


## Bindings ####################################################################


def test_reconcile_binding_not_supported():
    """Make sure bindings fail the precondition without binding kinds"""
    dm, result = run_reconcile({"bindings": {"autoDetect": True}})
    assert result.requeue
    cond = dm.get_condition(RECONCILED)
    assert cond["status"] == "False"
    assert cond["message"] == BINDING_NOT_SUPPORTED_MESSAGE
    assert get_child(dm, "Deployment") is None


def test_reconcile_binding_not_supported_resource_ref():
    """Make sure a referenced binding secret is not resolved when no binding
    kind is installed
    """
    dm, result = run_reconcile(
        {"bindings": {"resourceRef": "my-binding"}},
        resources=[make_secret("my-binding")],
    )
    assert result.requeue
    assert isinstance(result.exception, PreconditionError)
    cond = dm.get_condition(RECONCILED)
    assert cond["status"] == "False"
    assert cond["message"] == BINDING_NOT_SUPPORTED_MESSAGE
    assert "Service Binding CRDs" in cond["message"]
    status = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)["status"]
    assert constants.STATUS_RESOLVED_BINDINGS not in status
    assert get_child(dm, "Deployment") is None


def test_reconcile_binding_kinds_not_read_when_unsupported():
    """Make sure the binding kinds are not looked up without binding CRDs"""
    dm, _ = run_reconcile()
    looked_up = [
        call.kwargs.get("kind") for call in dm.get_object_current_state.call_args_list
    ]
    assert "ServiceBinding" not in looked_up


def test_reconcile_binding_secret_mounted():
    """Make sure a resolved binding secret is mounted in the workload"""
    binding_secret = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": "my-binding", "namespace": TEST_NAMESPACE},
        "data": {},
    }
    dm, result = run_reconcile(
        {"bindings": {"resourceRef": "my-binding"}},
        resources=[binding_secret],
        api_resources={"operators.coreos.com/v1alpha1": ["ServiceBinding"]},
    )
    assert not result.requeue
    container = get_child(dm, "Deployment")["spec"]["template"]["spec"][
        "containers"
    ][0]
    assert container["envFrom"] == [{"secretRef": {"name": "my-binding"}}]


def test_reconcile_missing_dependency():
    """Make sure a missing provider stops the reconcile with a short requeue"""
    dm, result = run_reconcile(
        {"service": {"consumes": [{"category": "openapi", "name": "nope"}]}}
    )
    assert result.requeue
    assert result.requeue_params.requeue_after.total_seconds() == 1
    cond = dm.get_condition(constants.DEPENDENCIES_SATISFIED_CONDITION)
    assert cond["status"] == "False"
    assert cond["message"].startswith(DEPENDENCY_NOT_SATISFIED)
    assert get_child(dm, "Deployment") is None


def test_reconcile_missing_dependency_other_namespace():
    """Make sure a provider missing from another namespace is an unsatisfied
    dependency naming that namespace
    """
    dm, result = run_reconcile(
        {
            "service": {
                "consumes": [
                    {"category": "openapi", "name": "nope", "namespace": "ns2"}
                ]
            }
        }
    )
    assert result.requeue
    assert isinstance(result.exception, DependencyError)
    assert result.requeue_params.requeue_after.total_seconds() == 1
    cond = dm.get_condition(constants.DEPENDENCIES_SATISFIED_CONDITION)
    assert cond["status"] == "False"
    assert cond["message"].startswith(DEPENDENCY_NOT_SATISFIED)
    assert "ns2" in cond["message"]
    assert dm.get_condition(RECONCILED)["status"] == "False"
    assert get_child(dm, "Deployment") is None


## Image streams ###############################################################


def test_reconcile_image_reference_without_image_streams():
    """Make sure the application image is the image reference when image
    streams are not served
    """
    dm, _ = run_reconcile()
    status = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)["status"]
    assert status[constants.STATUS_IMAGE_REFERENCE] == "my-image"
    assert get_container(dm)["image"] == "my-image"


def test_reconcile_image_stream_tag():
    """Make sure the containers run the image an image stream tag points to"""
    resolved = "registry.io/test/my-image@sha256:abc"
    dm, result = run_reconcile(
        {"applicationImage": "my-image:1.0"},
        resources=[image_stream_tag("my-image:1.0", resolved)],
        api_resources={constants.IMAGE_API_VERSION: ["ImageStream"]},
    )
    assert not result.requeue
    status = dm.get_obj("RuntimeComponent", TEST_INSTANCE_NAME)["status"]
    assert status[constants.STATUS_IMAGE_REFERENCE] == resolved
    assert get_container(dm)["image"] == resolved


def test_reconcile_image_stream_tag_changes():
    """Make sure the image reference is only written when the tag moves"""
    tag = image_stream_tag("my-image:latest", "registry.io/test/my-image@sha256:1")
    cr = setup_cr(spec={"applicationImage": "my-image"})
    dm = MockDeployManager(
        resources=[cr, tag],
        api_resources={constants.IMAGE_API_VERSION: ["ImageStream"]},
    )
    manager = ReconcileManager(deploy_manager=dm)
    manager.reconcile(REQUEST)
    assert get_container(dm)["image"] == "registry.io/test/my-image@sha256:1"

    original = RuntimeComponent.set_image_reference
    with mock.patch.object(
        RuntimeComponent, "set_image_reference", autospec=True, side_effect=original
    ) as set_image_reference:
        manager.reconcile(REQUEST)
        assert not set_image_reference.called

        current_tag = dm.get_obj(
            "ImageStreamTag", "my-image:latest", api_version=constants.IMAGE_API_VERSION
        )
        current_tag["image"]["dockerImageReference"] = (
            "registry.io/test/my-image@sha256:2"
        )
        dm.update(current_tag)
        manager.reconcile(REQUEST)
        set_image_reference.assert_called_once_with(
            mock.ANY, "registry.io/test/my-image@sha256:2"
        )
    assert get_container(dm)["image"] == "registry.io/test/my-image@sha256:2"


def test_reconcile_image_stream_tag_forbidden():
    """Make sure a forbidden image stream tag lookup keeps the application
    image
    """
    dm = MockDeployManager(
        resources=[setup_cr()],
        api_resources={constants.IMAGE_API_VERSION: ["ImageStream"]},
    )

    def get_state(kind, name, namespace=None, api_version=None):
        if kind == "ImageStreamTag":
            raise ResourceForbiddenError("imagestreamtags is forbidden")
        return DryRunDeployManager.get_object_current_state(
            dm, kind, name, namespace, api_version
        )

    dm.get_object_current_state = mock.Mock(side_effect=get_state)
    result = ReconcileManager(deploy_manager=dm).reconcile(REQUEST)
    assert not result.requeue
    assert get_container(dm)["image"] == "my-image"


## safe_reconcile ##############################################################


def test_safe_reconcile_catches_errors():
    """Make sure unexpected errors are turned into a requeue"""
    dm = MockDeployManager(get_state_raise=True)
    result = ReconcileManager(deploy_manager=dm).safe_reconcile(REQUEST)
    assert result.requeue
    assert isinstance(result.exception, AssertionError)


def test_default_deploy_manager():
    """Make sure a dry run deploy manager is made in dry run mode"""
    with library_config(dry_run=True):
        assert isinstance(ReconcileManager().deploy_manager, DryRunDeployManager)
