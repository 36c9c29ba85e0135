"""
Builders for the child objects of a CR. Each builder returns the identity of
the child and a mutate function that copies the relevant CR fields into it.
The mutate functions only touch the fields they own so that fields defaulted
by the cluster are left alone.
"""

# Standard
from typing import Callable, Optional, Tuple

# Local
from . import constants
from .application import Application
from .utils import merge_configs, to_plain

# The identity of a child and the function which sets its managed fields
Builder = Tuple[dict, Callable[[dict], None]]

# Name of the application container
CONTAINER_NAME = "app"


def object_id(
    app: Application, api_version: str, kind: str, name: Optional[str] = None
) -> dict:
    """Identity of a child of the CR, named after the CR by default"""
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name or app.name, "namespace": app.namespace},
    }


def service(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        labels = obj["metadata"]["labels"]
        monitor_label = constants.MONITOR_ENABLED_LABEL_TEMPLATE.format(group=app.group)
        if app.get_monitoring() is not None:
            labels[monitor_label] = "true"
        else:
            labels.pop(monitor_label, None)
        spec = obj.setdefault("spec", {})
        spec["type"] = app.get_service().get("type", "ClusterIP")
        spec["selector"] = app.get_selector_labels()
        spec["ports"] = [_service_port(app)]

    return object_id(app, constants.CORE_API_VERSION, "Service"), mutate


def headless_service(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        spec = obj.setdefault("spec", {})
        spec["clusterIP"] = "None"
        spec["selector"] = app.get_selector_labels()
        spec["ports"] = [_service_port(app)]

    return (
        object_id(
            app,
            constants.CORE_API_VERSION,
            "Service",
            headless_service_name(app),
        ),
        mutate,
    )


def headless_service_name(app: Application) -> str:
    return f"{app.name}{constants.HEADLESS_SERVICE_SUFFIX}"


def deployment(app: Application, binding_secret: Optional[dict] = None) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        spec = obj.setdefault("spec", {})
        _set_workload_spec(spec, app, binding_secret)

    return object_id(app, constants.APPS_API_VERSION, "Deployment"), mutate


def stateful_set(app: Application, binding_secret: Optional[dict] = None) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        spec = obj.setdefault("spec", {})
        container = _set_workload_spec(spec, app, binding_secret)
        spec["serviceName"] = headless_service_name(app)

        storage = app.get_storage() or {}
        template = storage.get("volumeClaimTemplate")
        if template:
            claim = to_plain(template)
        else:
            claim = {
                "metadata": {"name": "pvc", "labels": app.get_labels()},
                "spec": {
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": storage.get("size")}},
                },
            }
        claim_name = claim.get("metadata", {}).get("name", "pvc")
        current_claims = [
            current
            for current in spec.get("volumeClaimTemplates") or []
            if current.get("metadata", {}).get("name") == claim_name
        ]
        if current_claims:
            spec["volumeClaimTemplates"] = [merge_configs(current_claims[0], claim)]
        else:
            spec["volumeClaimTemplates"] = [claim]
        if storage.get("mountPath"):
            container["volumeMounts"] = [
                {
                    "name": claim_name,
                    "mountPath": storage["mountPath"],
                }
            ]
        else:
            container.pop("volumeMounts", None)

    return object_id(app, constants.APPS_API_VERSION, "StatefulSet"), mutate


def autoscaler(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        autoscaling = app.get_autoscaling() or {}
        spec = obj.setdefault("spec", {})
        spec["minReplicas"] = autoscaling.get("minReplicas", 1)
        spec["maxReplicas"] = autoscaling.get("maxReplicas")
        if autoscaling.get("targetCPUUtilizationPercentage") is not None:
            spec["targetCPUUtilizationPercentage"] = autoscaling[
                "targetCPUUtilizationPercentage"
            ]
        spec["scaleTargetRef"] = {
            "apiVersion": constants.APPS_API_VERSION,
            "kind": "StatefulSet" if app.get_storage() is not None else "Deployment",
            "name": app.name,
        }

    return (
        object_id(app, constants.AUTOSCALING_API_VERSION, "HorizontalPodAutoscaler"),
        mutate,
    )


def route(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        route_config = app.get_route()
        spec = obj.setdefault("spec", {})
        if route_config.get("host"):
            spec["host"] = route_config["host"]
        if route_config.get("path"):
            spec["path"] = route_config["path"]
        spec["to"] = {"kind": "Service", "name": app.name, "weight": 100}
        spec["port"] = {"targetPort": _port_name(app)}
        if route_config.get("termination"):
            tls = {"termination": route_config["termination"]}
            if route_config.get("insecureEdgeTerminationPolicy"):
                tls["insecureEdgeTerminationPolicy"] = route_config[
                    "insecureEdgeTerminationPolicy"
                ]
            spec["tls"] = tls
        else:
            spec.pop("tls", None)

    return object_id(app, constants.ROUTE_API_VERSION, "Route"), mutate


def ingress(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        route_config = app.get_route()
        rule = {
            "http": {
                "paths": [
                    {
                        "path": route_config.get("path", "/"),
                        "backend": {
                            "serviceName": app.name,
                            "servicePort": app.get_service_port(),
                        },
                    }
                ]
            }
        }
        if route_config.get("host"):
            rule["host"] = route_config["host"]
        obj.setdefault("spec", {})["rules"] = [rule]

    return object_id(app, constants.INGRESS_API_VERSION, "Ingress"), mutate


def knative_service(
    app: Application, binding_secret: Optional[dict] = None
) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        _set_pod_template(
            obj.setdefault("spec", {}),
            app,
            binding_secret,
            {"containerPort": app.get_service_port()},
        )

    return object_id(app, constants.KNATIVE_API_VERSION, "Service"), mutate


def service_monitor(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        monitoring = app.get_monitoring() or {}
        monitor_label = constants.MONITOR_ENABLED_LABEL_TEMPLATE.format(group=app.group)
        endpoints = to_plain(monitoring.get("endpoints")) or [{}]
        for endpoint in endpoints:
            if not endpoint.get("port") and not endpoint.get("targetPort"):
                endpoint["port"] = _port_name(app)
        spec = obj.setdefault("spec", {})
        spec["selector"] = {
            "matchLabels": {**app.get_selector_labels(), monitor_label: "true"}
        }
        spec["endpoints"] = endpoints
        if monitoring.get("labels"):
            obj["metadata"]["labels"].update(monitoring["labels"])

    return (
        object_id(app, constants.PROMETHEUS_API_VERSION, "ServiceMonitor"),
        mutate,
    )


def service_account(app: Application) -> Builder:
    def mutate(obj: dict):
        _set_metadata(obj, app)
        pull_secret = app.spec.get("pullSecret")
        if pull_secret:
            obj["imagePullSecrets"] = [{"name": pull_secret}]
        else:
            obj.pop("imagePullSecrets", None)

    return object_id(app, constants.CORE_API_VERSION, "ServiceAccount"), mutate


## Implementation Details ######################################################


def _set_metadata(obj: dict, app: Application):
    metadata = obj.setdefault("metadata", {})
    metadata["labels"] = {**(metadata.get("labels") or {}), **app.get_labels()}
    annotations = app.get_annotations()
    if annotations:
        metadata["annotations"] = {**(metadata.get("annotations") or {}), **annotations}


def _port_name(app: Application) -> str:
    return f"{app.get_service_port()}-tcp"


def _service_port(app: Application) -> dict:
    port = app.get_service_port()
    return {
        "name": _port_name(app),
        "port": port,
        "targetPort": app.get_service().get("targetPort", port),
        "protocol": "TCP",
    }


def _service_account_name(app: Application) -> str:
    return app.get_service_account_name() or app.name


def _set_container(
    container: dict, app: Application, binding_secret: Optional[dict], port: dict
):
    """Set the managed fields of the application container in place"""
    container["name"] = CONTAINER_NAME
    container["image"] = app.get_image_reference() or app.get_application_image()
    container["imagePullPolicy"] = app.get_pull_policy()

    managed = {
        key: to_plain(app.spec[key])
        for key in ("env", "envFrom", "resources")
        if app.spec.get(key)
    }
    if app.spec.get("resourceConstraints"):
        managed["resources"] = to_plain(app.spec["resourceConstraints"])
    if binding_secret is not None:
        managed["envFrom"] = list(managed.get("envFrom") or []) + [
            {"secretRef": {"name": binding_secret["metadata"]["name"]}}
        ]
    for key in ("env", "envFrom"):
        if key in managed:
            container[key] = managed[key]
        else:
            container.pop(key, None)
    # The cluster defaults unset resources to an empty object
    container["resources"] = managed.get("resources", {})

    # Keep the fields defaulted on the existing port
    current_ports = [
        current
        for current in container.get("ports") or []
        if current.get("containerPort") == port["containerPort"]
    ]
    if current_ports:
        current_ports[0].update(port)
        container["ports"] = current_ports[:1]
    else:
        container["ports"] = [port]


def _set_pod_template(
    spec: dict, app: Application, binding_secret: Optional[dict], port: dict
) -> dict:
    """Set the managed fields of the pod template in place. Fields of the
    template, the pod and the containers which are not managed are kept.

    Returns:
        container:  dict
            The application container in the template
    """
    template = spec.setdefault("template", {})
    metadata = template.setdefault("metadata", {})
    metadata["labels"] = {**(metadata.get("labels") or {}), **app.get_labels()}
    pod_spec = template.setdefault("spec", {})
    pod_spec["serviceAccountName"] = _service_account_name(app)

    containers = pod_spec.setdefault("containers", [])
    container = next(
        (current for current in containers if current.get("name") == CONTAINER_NAME),
        None,
    )
    if container is None:
        container = {}
        containers.insert(0, container)
    _set_container(container, app, binding_secret, port)
    return container


def _set_workload_spec(
    spec: dict, app: Application, binding_secret: Optional[dict]
) -> dict:
    """Fields shared by the Deployment and the StatefulSet

    Returns:
        container:  dict
            The application container in the pod template
    """
    if app.get_autoscaling() is None:
        spec["replicas"] = app.get_replicas() if app.get_replicas() is not None else 1
    spec["selector"] = {"matchLabels": app.get_selector_labels()}
    return _set_pod_template(
        spec,
        app,
        binding_secret,
        {
            "containerPort": app.get_service_port(),
            "name": _port_name(app),
            "protocol": "TCP",
        },
    )
