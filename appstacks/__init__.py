"""
Package exports
"""

# Local
from . import config, reconcile, status, watch
from .application import (
    Application,
    RuntimeApplication,
    RuntimeComponent,
    application_class_for,
)
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config, assert_precondition
from .op_config import OperatorConfig
from .reconcile import ReconcileManager
from .types import ReconciliationResult, RequeueParams, ResourceId
