"""
The operator-wide configuration which may be changed while the operator runs.
It lives in a ConfigMap in the operator's namespace and is loaded fresh at the
start of every reconcile, then handed explicitly to the steps that need it.
"""

# Standard
from typing import Dict, Optional, Tuple
import copy

# First Party
import alog

# Local
from . import config, constants
from .convergence import create_or_update
from .deploy_manager import DeployManagerBase
from .exceptions import AppstacksError, assert_cluster
from .types import ResourceId
from .utils import split_list

log = alog.use_channel("OPCFG")

## Public ######################################################################

# Keys in the operator ConfigMap
DEFAULT_ISSUER_KEY = "defaultIssuer"
USE_CLUSTER_ISSUER_KEY = "useClusterIssuer"
BINDING_GROUP_VERSION_KINDS_KEY = "serviceBinding.groupVersionKinds"


class OperatorConfig:
    """Immutable view of the operator ConfigMap data for a single reconcile"""

    def __init__(self, data: Optional[Dict[str, str]] = None):
        self._data = self.defaults()
        self._data.update(data or {})
        self._binding_kinds = None

    @staticmethod
    def defaults() -> Dict[str, str]:
        """The values used for keys that the ConfigMap does not set"""
        defaults = config.operator_defaults
        return {
            DEFAULT_ISSUER_KEY: str(defaults.default_issuer),
            USE_CLUSTER_ISSUER_KEY: str(defaults.use_cluster_issuer),
            BINDING_GROUP_VERSION_KINDS_KEY: str(
                defaults.binding_group_version_kinds
            ),
        }

    @classmethod
    @alog.logged_function(log.debug2)
    def load(
        cls,
        deploy_manager: DeployManagerBase,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ) -> "OperatorConfig":
        """Load the operator config from the cluster and write the merged
        values back so that the defaults are visible to users

        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used to read and write the ConfigMap
            namespace:  Optional[str]
                The namespace of the ConfigMap. Defaults to the operator
                namespace, or the first watched namespace if that is unset.
            name:  Optional[str]
                The name of the ConfigMap

        Returns:
            op_config:  OperatorConfig
                The config for this reconcile
        """
        namespace = namespace or operator_namespace()
        name = name or config.operator_config_map
        success, config_map = deploy_manager.get_object_current_state(
            kind="ConfigMap",
            name=name,
            namespace=namespace,
            api_version=constants.CORE_API_VERSION,
        )
        assert_cluster(success, f"Failed to read operator ConfigMap {namespace}/{name}")
        if config_map is None:
            log.info(
                "Operator ConfigMap %s/%s not found. Using defaults", namespace, name
            )

        op_config = cls((config_map or {}).get("data"))

        def mutate(obj: dict):
            obj["data"] = op_config.to_dict()

        try:
            create_or_update(
                deploy_manager,
                {
                    "apiVersion": constants.CORE_API_VERSION,
                    "kind": "ConfigMap",
                    "metadata": {"name": name, "namespace": namespace},
                },
                None,
                mutate,
            )
        except AppstacksError as err:
            log.warning(
                "Failed to update operator ConfigMap %s/%s: %s", namespace, name, err
            )
        return op_config

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._data.get(key, default)

    def to_dict(self) -> Dict[str, str]:
        return copy.deepcopy(self._data)

    @property
    def default_issuer(self) -> str:
        return self._data[DEFAULT_ISSUER_KEY]

    @property
    def use_cluster_issuer(self) -> bool:
        return str(self._data[USE_CLUSTER_ISSUER_KEY]).strip().lower() == "true"

    @property
    def binding_kinds(self) -> Tuple[ResourceId, ...]:
        """The service binding kinds in the order they are tried. Entries
        which are not in the form Kind.version.group are skipped.
        """
        if self._binding_kinds is None:
            kinds = []
            for kind_arg in split_list(self._data.get(BINDING_GROUP_VERSION_KINDS_KEY)):
                res_id = ResourceId.from_kind_arg(kind_arg)
                if res_id is None:
                    log.warning("Skipping invalid service binding kind [%s]", kind_arg)
                    continue
                kinds.append(res_id)
            self._binding_kinds = tuple(kinds)
        return self._binding_kinds


def watch_namespaces() -> Tuple[str, ...]:
    """The namespaces watched by the operator. A single empty entry means the
    whole cluster.
    """
    namespaces = split_list(config.watch_namespace)
    return tuple(namespaces) if namespaces else ("",)


def operator_namespace() -> str:
    """The namespace holding the operator ConfigMap"""
    if config.operator_namespace:
        return config.operator_namespace
    return watch_namespaces()[0]
