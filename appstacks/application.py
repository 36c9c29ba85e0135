"""
The Application class is the capability interface that the reconcile engine
uses to read the configuration of a CR. Each supported kind implements it,
so the engine never needs to know which kind it is reconciling.
"""

# Standard
from typing import Dict, List, Optional, Type
import abc
import copy
import re

# First Party
import aconfig
import alog

# Local
from . import constants
from .exceptions import ValidationError
from .utils import nested_get, to_plain

log = alog.use_channel("APPLC")

## Public ######################################################################

# Kubernetes resource quantity, e.g. 10Mi, 1.5G, 100m or 1e3
QUANTITY_PATTERN = re.compile(
    r"^[+-]?(\d+(\.\d*)?|\.\d+)(([KMGTPE]i)|[numkMGTPE]|([eE][+-]?\d+))?$"
)

# Well-known label keys
INSTANCE_LABEL = "app.kubernetes.io/instance"
NAME_LABEL = "app.kubernetes.io/name"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
VERSION_LABEL = "app.kubernetes.io/version"
COMPONENT_LABEL = "app.kubernetes.io/component"
PART_OF_LABEL = "app.kubernetes.io/part-of"
LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"


class Application(abc.ABC):
    """Wrapper around the manifest of a CR exposing the configuration the
    reconcile engine acts on. The manifest (including its status) is mutated
    in place by defaulting and by the status engine.
    """

    def __init__(self, manifest: dict):
        self._manifest = aconfig.Config(
            copy.deepcopy(dict(manifest)), override_env_vars=False
        )
        self._manifest.setdefault("metadata", {})
        self._manifest.setdefault("spec", {})
        self._manifest.setdefault("status", {})

    ## Kind properties #########################################################

    @property
    @abc.abstractmethod
    def group(self) -> str:
        """The api group of the kind. It namespaces the annotations and labels
        that the operator manages.
        """

    @property
    @abc.abstractmethod
    def managed_by(self) -> str:
        """The value of the managed-by label placed on children"""

    ## Identity ################################################################

    @property
    def kind(self) -> str:
        return self._manifest.get("kind")

    @property
    def api_version(self) -> str:
        return self._manifest.get("apiVersion")

    @property
    def metadata(self) -> dict:
        return self._manifest["metadata"]

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace")

    @property
    def generation(self) -> int:
        return self.metadata.get("generation", 0)

    @property
    def spec(self) -> dict:
        return self._manifest["spec"]

    @property
    def status(self) -> dict:
        return self._manifest["status"]

    def to_dict(self) -> dict:
        """Get a plain copy of the full manifest"""
        return to_plain(self._manifest)

    ## Configuration ###########################################################

    def get_application_image(self) -> Optional[str]:
        return self.spec.get("applicationImage")

    def get_pull_policy(self) -> Optional[str]:
        return self.spec.get("pullPolicy")

    def get_replicas(self) -> Optional[int]:
        return self.spec.get("replicas")

    def get_service_account_name(self) -> Optional[str]:
        return self.spec.get("serviceAccountName")

    def get_service(self) -> dict:
        return self.spec.get("service") or {}

    def get_service_port(self) -> int:
        return self.get_service().get("port", 8080)

    def get_provides(self) -> Optional[dict]:
        return self.get_service().get("provides")

    def get_consumes(self) -> List[dict]:
        return self.get_service().get("consumes") or []

    def get_expose(self) -> bool:
        return bool(self.spec.get("expose"))

    def get_route(self) -> dict:
        return self.spec.get("route") or {}

    def get_storage(self) -> Optional[dict]:
        return self.spec.get("storage")

    def get_autoscaling(self) -> Optional[dict]:
        return self.spec.get("autoscaling")

    def get_monitoring(self) -> Optional[dict]:
        return self.spec.get("monitoring")

    def get_bindings(self) -> Optional[dict]:
        return self.spec.get("bindings")

    def get_binding_resource_ref(self) -> Optional[str]:
        return nested_get(self.spec, "bindings.resourceRef") or None

    def get_binding_auto_detect(self) -> bool:
        """Auto detection is on unless explicitly disabled"""
        return nested_get(self.spec, "bindings.autoDetect", True) is not False

    def get_create_knative_service(self) -> bool:
        return bool(self.spec.get("createKnativeService"))

    def get_version(self) -> Optional[str]:
        return self.spec.get("version")

    ## Status ##################################################################

    def get_consumed_services(self) -> Dict[str, List[str]]:
        return self.status.setdefault(constants.STATUS_CONSUMED_SERVICES, {})

    def get_resolved_bindings(self) -> List[str]:
        return list(self.status.get(constants.STATUS_RESOLVED_BINDINGS) or [])

    def set_resolved_bindings(self, bindings: List[str]):
        self.status[constants.STATUS_RESOLVED_BINDINGS] = list(bindings)

    def get_image_reference(self) -> Optional[str]:
        return self.status.get(constants.STATUS_IMAGE_REFERENCE) or None

    def set_image_reference(self, image_reference: Optional[str]):
        self.status[constants.STATUS_IMAGE_REFERENCE] = image_reference

    def update_status(self, deploy_manager: "DeployManagerBase") -> bool:  # noqa: F821
        """Write the in-memory status to the cluster

        Returns:
            success:  bool
                Whether or not the status was written
        """
        success, _ = deploy_manager.set_status(
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
            status=to_plain(self.status),
            api_version=self.api_version,
        )
        return success

    ## Children ################################################################

    def get_labels(self) -> Dict[str, str]:
        """The labels to place on all children"""
        labels = {
            INSTANCE_LABEL: self.name,
            NAME_LABEL: self.name,
            MANAGED_BY_LABEL: self.managed_by,
        }
        if self.get_version():
            labels[VERSION_LABEL] = self.get_version()
        for key, value in (self.metadata.get("labels") or {}).items():
            if key != INSTANCE_LABEL:
                labels[key] = value
        if self.get_provides() is not None:
            labels[constants.BINDABLE_LABEL_TEMPLATE.format(group=self.group)] = "true"
        return labels

    def get_annotations(self) -> Dict[str, str]:
        """The annotations to place on all children"""
        annotations = dict(self.metadata.get("annotations") or {})
        annotations.pop(LAST_APPLIED_ANNOTATION, None)
        return annotations

    def get_selector_labels(self) -> Dict[str, str]:
        return {INSTANCE_LABEL: self.name}

    ## Lifecycle ###############################################################

    def initialize(self, op_config: "OperatorConfig"):  # noqa: F821
        """Apply the defaults for all unset fields

        Args:
            op_config:  OperatorConfig
                The operator config of the current reconcile
        """
        spec = self.spec
        spec.setdefault("pullPolicy", "IfNotPresent")
        spec.setdefault("resourceConstraints", {})
        service = spec.setdefault("service", {})
        if not service.get("type"):
            service["type"] = "ClusterIP"
        if not service.get("port"):
            service["port"] = 8080
        provides = service.get("provides")
        if provides is not None and not provides.get("protocol"):
            provides["protocol"] = "http"

        issuer_ref = {
            "name": op_config.default_issuer,
            "kind": "ClusterIssuer" if op_config.use_cluster_issuer else "Issuer",
        }
        for certificate in (
            service.get("certificate"),
            (spec.get("route") or {}).get("certificate"),
        ):
            if certificate is not None and not certificate.get("issuerRef"):
                certificate["issuerRef"] = dict(issuer_ref)

    def validate(self):
        """Check the CR for settings which can not be reconciled

        Raises:
            ValidationError: The CR is invalid
        """
        storage = self.get_storage()
        if storage is not None and not storage.get("volumeClaimTemplate"):
            size = storage.get("size")
            if not size:
                raise ValidationError(
                    "validation failed: must set the field(s): spec.storage.size"
                )
            if not QUANTITY_PATTERN.match(str(size)):
                raise ValidationError(
                    f"validation failed: cannot parse '{size}': quantities must "
                    "match the regular expression "
                    "'^([+-]?[0-9.]+)([eEinumkKMGTP]*[-+]?[0-9]*)$'"
                )


class RuntimeComponent(Application):
    """The RuntimeComponent kind"""

    KIND = "RuntimeComponent"
    API_VERSION = "app.stacks/v1beta1"

    group = "app.stacks"
    managed_by = "runtime-component-operator"

    def get_application_name(self) -> str:
        return self.spec.get("applicationName") or self.name

    def get_labels(self) -> Dict[str, str]:
        labels = super().get_labels()
        labels.setdefault(COMPONENT_LABEL, "backend")
        labels[PART_OF_LABEL] = self.get_application_name()
        return labels

    def initialize(self, op_config):
        super().initialize(op_config)
        if not self.spec.get("applicationName"):
            self.spec["applicationName"] = (
                self.metadata.get("labels") or {}
            ).get(PART_OF_LABEL) or self.name
        if self.metadata.get("labels") is not None:
            self.metadata["labels"][PART_OF_LABEL] = self.spec["applicationName"]


class RuntimeApplication(Application):
    """The RuntimeApplication kind"""

    KIND = "RuntimeApplication"
    API_VERSION = "runtime.app/v1beta1"

    group = "runtime.app"
    managed_by = "application-runtime-operator"

    def initialize(self, op_config):
        super().initialize(op_config)
        for consume in self.get_consumes():
            if (
                consume.get("category") == constants.SERVICE_BINDING_CATEGORY_OPENAPI
                and not consume.get("namespace")
            ):
                consume["namespace"] = self.namespace

    def get_annotations(self) -> Dict[str, str]:
        return dict(self.metadata.get("annotations") or {})


# All supported kinds
APPLICATION_CLASSES = (RuntimeComponent, RuntimeApplication)


def application_class_for(kind: str) -> Type[Application]:
    """Look up the Application class for a kind

    Raises:
        ValueError: The kind is not supported
    """
    for app_class in APPLICATION_CLASSES:
        if app_class.KIND == kind:
            return app_class
    raise ValueError(f"Unsupported kind [{kind}]")

