"""
Tests for the child object builders
"""

# Standard
import copy

# Local
from appstacks import builders, constants
from appstacks.application import INSTANCE_LABEL, RuntimeComponent
from appstacks.op_config import OperatorConfig
from appstacks.test_helpers.helpers import TEST_INSTANCE_NAME, TEST_NAMESPACE, setup_cr

## Helpers #####################################################################


def make_app(spec=None, **kwargs):
    app = RuntimeComponent(setup_cr(spec=spec, **kwargs))
    app.initialize(OperatorConfig())
    return app


def build(builder, *args):
    """Run a builder against an empty object and return the result"""
    obj, mutate = builder(*args)
    mutate(obj)
    return obj


## Tests #######################################################################


def test_object_id():
    """Make sure children are named after the CR in its namespace"""
    obj = builders.object_id(make_app(), "v1", "Service")
    assert obj == {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": TEST_INSTANCE_NAME, "namespace": TEST_NAMESPACE},
    }


def test_service():
    """Make sure the service exposes the configured port"""
    obj = build(builders.service, make_app({"service": {"port": 9080}}))
    assert obj["spec"]["type"] == "ClusterIP"
    assert obj["spec"]["selector"] == {INSTANCE_LABEL: TEST_INSTANCE_NAME}
    assert obj["spec"]["ports"] == [
        {"name": "9080-tcp", "port": 9080, "targetPort": 9080, "protocol": "TCP"}
    ]
    monitor_label = constants.MONITOR_ENABLED_LABEL_TEMPLATE.format(group="app.stacks")
    assert monitor_label not in obj["metadata"]["labels"]


def test_service_monitor_label():
    """Make sure the monitoring label is added and removed with monitoring"""
    monitor_label = constants.MONITOR_ENABLED_LABEL_TEMPLATE.format(group="app.stacks")
    obj = build(builders.service, make_app({"monitoring": {}}))
    assert obj["metadata"]["labels"][monitor_label] == "true"
    _, mutate = builders.service(make_app())
    mutate(obj)
    assert monitor_label not in obj["metadata"]["labels"]


def test_headless_service():
    """Make sure the headless service has no cluster IP"""
    obj = build(builders.headless_service, make_app())
    assert obj["metadata"]["name"] == f"{TEST_INSTANCE_NAME}-headless"
    assert obj["spec"]["clusterIP"] == "None"


def test_deployment():
    """Make sure the deployment runs the application image"""
    obj = build(builders.deployment, make_app({"replicas": 3}))
    assert obj["kind"] == "Deployment"
    assert obj["spec"]["replicas"] == 3
    assert obj["spec"]["selector"] == {
        "matchLabels": {INSTANCE_LABEL: TEST_INSTANCE_NAME}
    }
    container = obj["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "my-image"
    assert container["imagePullPolicy"] == "IfNotPresent"
    assert container["ports"][0]["containerPort"] == 8080
    assert obj["spec"]["template"]["spec"]["serviceAccountName"] == TEST_INSTANCE_NAME


def test_deployment_default_replicas():
    """Make sure one replica is run by default"""
    assert build(builders.deployment, make_app())["spec"]["replicas"] == 1


def test_deployment_autoscaling_replicas():
    """Make sure replicas are left to the autoscaler"""
    app = make_app({"replicas": 3, "autoscaling": {"maxReplicas": 5}})
    assert "replicas" not in build(builders.deployment, app)["spec"]


def test_deployment_binding_secret():
    """Make sure the binding secret is mounted as environment"""
    secret = {"metadata": {"name": "my-binding"}}
    obj = build(builders.deployment, make_app(), secret)
    container = obj["spec"]["template"]["spec"]["containers"][0]
    assert container["envFrom"] == [{"secretRef": {"name": "my-binding"}}]


def test_deployment_keeps_unmanaged_fields():
    """Make sure fields the builder does not manage are kept on the pod
    template, the containers and the ports
    """
    obj, mutate = builders.deployment(make_app({"env": [{"name": "A", "value": "1"}]}))
    mutate(obj)
    template = obj["spec"]["template"]
    template["metadata"]["annotations"] = {"restarted": "now"}
    template["spec"]["restartPolicy"] = "Always"
    template["spec"]["containers"][0]["terminationMessagePath"] = "/dev/log"
    template["spec"]["containers"][0]["ports"][0]["hostPort"] = 0
    template["spec"]["containers"].append({"name": "sidecar", "image": "proxy"})

    _, mutate = builders.deployment(make_app({"applicationImage": "new-image"}))
    mutate(obj)
    template = obj["spec"]["template"]
    assert template["metadata"]["annotations"] == {"restarted": "now"}
    assert template["spec"]["restartPolicy"] == "Always"
    container, sidecar = template["spec"]["containers"]
    assert container["image"] == "new-image"
    assert container["terminationMessagePath"] == "/dev/log"
    assert container["ports"] == [
        {"containerPort": 8080, "name": "8080-tcp", "protocol": "TCP", "hostPort": 0}
    ]
    assert "env" not in container
    assert container["resources"] == {}
    assert sidecar == {"name": "sidecar", "image": "proxy"}


def test_deployment_image_reference():
    """Make sure the resolved image reference wins over the application image"""
    image_reference = "registry.io/img@sha256:1"
    app = make_app(status={constants.STATUS_IMAGE_REFERENCE: image_reference})
    container = build(builders.deployment, app)["spec"]["template"]["spec"][
        "containers"
    ][0]
    assert container["image"] == image_reference


def test_stateful_set():
    """Make sure the stateful set claims the requested storage"""
    app = make_app({"storage": {"size": "10Mi", "mountPath": "/data"}, "replicas": 3})
    obj = build(builders.stateful_set, app)
    spec = obj["spec"]
    assert spec["replicas"] == 3
    assert spec["serviceName"] == f"{TEST_INSTANCE_NAME}-headless"
    claim = spec["volumeClaimTemplates"][0]
    assert claim["spec"]["resources"]["requests"]["storage"] == "10Mi"
    container = spec["template"]["spec"]["containers"][0]
    assert container["volumeMounts"] == [{"name": "pvc", "mountPath": "/data"}]


def test_stateful_set_keeps_claim_defaults():
    """Make sure fields defaulted on an existing claim template are kept"""
    app = make_app({"storage": {"size": "10Mi"}})
    obj, mutate = builders.stateful_set(app)
    mutate(obj)
    obj["spec"]["volumeClaimTemplates"][0]["spec"]["volumeMode"] = "Filesystem"
    obj["spec"]["volumeClaimTemplates"][0]["status"] = {"phase": "Pending"}
    mutate(obj)
    claim = obj["spec"]["volumeClaimTemplates"][0]
    assert claim["spec"]["volumeMode"] == "Filesystem"
    assert claim["status"] == {"phase": "Pending"}
    assert claim["spec"]["resources"]["requests"]["storage"] == "10Mi"


def test_stateful_set_claim_template():
    """Make sure a given claim template is used as-is"""
    template = {"metadata": {"name": "data"}, "spec": {"storageClassName": "fast"}}
    app = make_app({"storage": {"volumeClaimTemplate": template}})
    obj = build(builders.stateful_set, app)
    assert obj["spec"]["volumeClaimTemplates"] == [template]


def test_autoscaler():
    """Make sure the autoscaler targets the workload"""
    app = make_app({"autoscaling": {"maxReplicas": 5}, "storage": {"size": "1Gi"}})
    spec = build(builders.autoscaler, app)["spec"]
    assert spec["minReplicas"] == 1
    assert spec["maxReplicas"] == 5
    assert spec["scaleTargetRef"]["kind"] == "StatefulSet"


def test_route():
    """Make sure the route points at the service"""
    app = make_app({"route": {"host": "example.com", "termination": "edge"}})
    spec = build(builders.route, app)["spec"]
    assert spec["host"] == "example.com"
    assert spec["to"]["name"] == TEST_INSTANCE_NAME
    assert spec["port"] == {"targetPort": "8080-tcp"}
    assert spec["tls"] == {"termination": "edge"}


def test_ingress():
    """Make sure the ingress routes to the service port"""
    app = make_app({"route": {"host": "example.com"}})
    rule = build(builders.ingress, app)["spec"]["rules"][0]
    assert rule["host"] == "example.com"
    assert rule["http"]["paths"][0]["backend"] == {
        "serviceName": TEST_INSTANCE_NAME,
        "servicePort": 8080,
    }


def test_knative_service():
    """Make sure the knative service runs the application image"""
    obj = build(builders.knative_service, make_app())
    assert obj["apiVersion"] == constants.KNATIVE_API_VERSION
    container = obj["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "my-image"


def test_service_monitor():
    """Make sure the monitor selects the labeled service"""
    obj = build(builders.service_monitor, make_app({"monitoring": {}}))
    monitor_label = constants.MONITOR_ENABLED_LABEL_TEMPLATE.format(group="app.stacks")
    assert obj["spec"]["selector"]["matchLabels"][monitor_label] == "true"
    assert obj["spec"]["endpoints"] == [{"port": "8080-tcp"}]


def test_service_account_pull_secret():
    """Make sure the pull secret is set on the service account"""
    obj = build(builders.service_account, make_app({"pullSecret": "regcred"}))
    assert obj["imagePullSecrets"] == [{"name": "regcred"}]
    _, mutate = builders.service_account(make_app())
    mutate(obj)
    assert "imagePullSecrets" not in obj


def test_mutate_idempotent():
    """Make sure running a mutate function twice yields the same object"""
    app = make_app({"storage": {"size": "10Mi"}})
    obj, mutate = builders.stateful_set(app)
    mutate(obj)
    first = copy.deepcopy(obj)
    mutate(obj)
    assert obj == first
