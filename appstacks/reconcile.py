"""
The ReconcileManager class manages an individual reconcile of a CR. It loads
the operator config, applies the CR defaults and then runs each reconcile
step in order, stopping at the first step which asks for a requeue.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from . import builders, config, constants
from .application import Application, application_class_for
from .capabilities import (
    INGRESS,
    KNATIVE_SERVICE,
    ROUTE,
    SERVICE_MONITOR,
    is_binding_supported,
    is_kind_supported,
)
from .certificates import reconcile_certificates
from .convergence import create_or_update, delete_resource
from .deploy_manager import (
    DeployManagerBase,
    DryRunDeployManager,
    OpenshiftDeployManager,
)
from .exceptions import (
    AppstacksError,
    PreconditionError,
    ValidationError,
    assert_cluster,
)
from .image_streams import resolve_image_reference
from .op_config import OperatorConfig
from .service_binding import (
    consumes,
    external_bindings,
    get_resolved_binding_secret,
    provides,
)
from .status import manage_error, manage_success
from .types import ReconciliationResult, RequeueParams, ResourceId

log = alog.use_channel("RECON")

## Public ######################################################################

BINDING_NOT_SUPPORTED_MESSAGE = (
    "failed to reconcile as the operator failed to find Service Binding CRDs"
)
KNATIVE_NOT_SUPPORTED_MESSAGE = (
    "failed to reconcile Knative service as operator could not find Knative CRDs"
)


class ReconcileManager:
    """This class manages reconciliations of the CRs handled by the operator.
    Each call to reconcile converges the children of a single CR.
    """

    def __init__(self, deploy_manager: Optional[DeployManagerBase] = None):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Deploy manager to use. If not given, one is created based on
                the dry_run config.
        """
        self._deploy_manager = deploy_manager

    @property
    def deploy_manager(self) -> DeployManagerBase:
        """Lazy property access to the deploy manager"""
        if self._deploy_manager is None:
            if config.dry_run:
                log.info("Running DRY RUN")
                self._deploy_manager = DryRunDeployManager()
            else:
                log.debug("Running with the openshift deploy manager")
                self._deploy_manager = OpenshiftDeployManager()
        return self._deploy_manager

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(self, request: ResourceId) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general
        reconcile path is as follows:

            1. Load the operator config
            2. Fetch the CR
            3. Apply the CR defaults and validate the CR
            4. Write back the defaults
            5. Run the service binding and certificate steps
            6. Converge the children of the CR

        Args:
            request:  ResourceId
                The identity of the CR to reconcile

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        deploy_manager = self.deploy_manager
        op_config = OperatorConfig.load(deploy_manager)

        success, manifest = deploy_manager.get_object_current_state(
            kind=request.kind,
            name=request.name,
            namespace=request.namespace,
            api_version=request.api_version,
        )
        assert_cluster(success, f"Failed to fetch {request.get_named_id()}")
        if manifest is None:
            log.info("%s not found. It was likely deleted", request.get_named_id())
            return ReconciliationResult.done()

        app = application_class_for(request.kind)(manifest)
        original = _without_status(app.to_dict())
        try:
            app.initialize(op_config)
            app.validate()
        except ValidationError as err:
            log.info("Invalid %s: %s", request.get_named_id(), err)
            result = manage_error(
                deploy_manager, err, constants.RECONCILED_CONDITION, app
            )
            return ReconciliationResult(requeue=False, exception=result.exception)

        # Persist the defaults. The update triggers another reconcile, so the
        # first generation stops here.
        current_generation = app.generation
        if _without_status(app.to_dict()) != original:
            log.debug("Writing defaults to %s", request.get_named_id())
            try:
                updated = deploy_manager.update(_without_status(app.to_dict()))
            except AppstacksError as err:
                return manage_error(
                    deploy_manager, err, constants.RECONCILED_CONDITION, app
                )
            app = application_class_for(request.kind)(updated)
            if current_generation == 1:
                log.debug("Defaults written for the first generation")
                return ReconciliationResult.done()

        return self._reconcile_application(deploy_manager, app, op_config)

    def safe_reconcile(self, request: ResourceId) -> ReconciliationResult:
        """
        This function calls out to reconcile but catches any errors thrown. This
        function guarantees a safe result which is needed by the work queue

        Args:
            request:  ResourceId
                The identity of the CR to reconcile

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(request)

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        # If we got to this return it means there was an
        # exception during reconcile and we should requeue
        # with the default backoff period
        log.info("Requeuing CR due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Implementation Details ##################################################

    def _reconcile_application(
        self,
        deploy_manager: DeployManagerBase,
        app: Application,
        op_config: OperatorConfig,
    ) -> ReconciliationResult:
        for step in (provides, consumes):
            result = step(deploy_manager, app)
            if _should_return(result):
                return result

        result = reconcile_certificates(deploy_manager, app)
        if result is not None:
            return result

        try:
            self._reconcile_image_reference(deploy_manager, app)
            binding_supported = is_binding_supported(deploy_manager, op_config)
        except AppstacksError as err:
            return manage_error(
                deploy_manager, err, constants.RECONCILED_CONDITION, app
            )

        # Binding kinds are only looked up when a binding CRD is installed
        if binding_supported:
            result = external_bindings(deploy_manager, app, op_config)
            if _should_return(result):
                return result
        elif app.get_bindings() is not None:
            return manage_error(
                deploy_manager,
                PreconditionError(BINDING_NOT_SUPPORTED_MESSAGE),
                constants.RECONCILED_CONDITION,
                app,
            )

        try:
            binding_secret = get_resolved_binding_secret(deploy_manager, app)
            self._reconcile_service_account(deploy_manager, app)

            if app.get_create_knative_service():
                self._reconcile_knative(deploy_manager, app, binding_secret)
            else:
                self._reconcile_workload(deploy_manager, app, binding_secret)
        except AppstacksError as err:
            return manage_error(
                deploy_manager, err, constants.RECONCILED_CONDITION, app
            )

        return manage_success(deploy_manager, constants.RECONCILED_CONDITION, app)

    @staticmethod
    def _reconcile_image_reference(
        deploy_manager: DeployManagerBase, app: Application
    ):
        image_reference = resolve_image_reference(deploy_manager, app) or None
        if image_reference == app.get_image_reference():
            return
        log.info(
            "Updating status.imageReference of %s/%s to %s",
            app.namespace,
            app.name,
            image_reference,
        )
        app.set_image_reference(image_reference)
        assert_cluster(
            app.update_status(deploy_manager),
            f"Failed to update status.imageReference of {app.namespace}/{app.name}",
        )

    @staticmethod
    def _reconcile_service_account(deploy_manager: DeployManagerBase, app: Application):
        obj, mutate = builders.service_account(app)
        if app.get_service_account_name():
            delete_resource(deploy_manager, obj)
        else:
            create_or_update(deploy_manager, obj, app.to_dict(), mutate)

    @staticmethod
    def _reconcile_knative(
        deploy_manager: DeployManagerBase,
        app: Application,
        binding_secret: Optional[dict],
    ):
        log.debug("Reconciling %s as a Knative service", app.name)
        for builder in (
            builders.service,
            builders.headless_service,
            builders.deployment,
            builders.stateful_set,
            builders.autoscaler,
        ):
            delete_resource(deploy_manager, builder(app)[0])
        for kind, builder in ((INGRESS, builders.ingress), (ROUTE, builders.route)):
            if is_kind_supported(deploy_manager, kind):
                delete_resource(deploy_manager, builder(app)[0])

        if not is_kind_supported(deploy_manager, KNATIVE_SERVICE):
            raise PreconditionError(KNATIVE_NOT_SUPPORTED_MESSAGE)
        obj, mutate = builders.knative_service(app, binding_secret)
        create_or_update(deploy_manager, obj, app.to_dict(), mutate)

    @staticmethod
    def _reconcile_workload(
        deploy_manager: DeployManagerBase,
        app: Application,
        binding_secret: Optional[dict],
    ):
        owner = app.to_dict()
        if is_kind_supported(deploy_manager, KNATIVE_SERVICE):
            delete_resource(deploy_manager, builders.knative_service(app)[0])

        create_or_update(deploy_manager, *_with_owner(builders.service(app), owner))

        if app.get_storage() is not None:
            delete_resource(deploy_manager, builders.deployment(app)[0])
            create_or_update(
                deploy_manager, *_with_owner(builders.headless_service(app), owner)
            )
            create_or_update(
                deploy_manager,
                *_with_owner(builders.stateful_set(app, binding_secret), owner),
            )
        else:
            delete_resource(deploy_manager, builders.stateful_set(app)[0])
            delete_resource(deploy_manager, builders.headless_service(app)[0])
            create_or_update(
                deploy_manager,
                *_with_owner(builders.deployment(app, binding_secret), owner),
            )

        _present_iff(
            deploy_manager,
            builders.autoscaler(app),
            owner,
            app.get_autoscaling() is not None,
        )

        if is_kind_supported(deploy_manager, ROUTE):
            _present_iff(deploy_manager, builders.route(app), owner, app.get_expose())
        elif is_kind_supported(deploy_manager, INGRESS):
            _present_iff(deploy_manager, builders.ingress(app), owner, app.get_expose())

        if is_kind_supported(deploy_manager, SERVICE_MONITOR):
            _present_iff(
                deploy_manager,
                builders.service_monitor(app),
                owner,
                app.get_monitoring() is not None,
            )


def _should_return(result: ReconciliationResult) -> bool:
    return result.requeue or result.exception is not None


def _without_status(manifest: dict) -> dict:
    return {key: val for key, val in manifest.items() if key != "status"}


def _with_owner(builder: builders.Builder, owner: dict):
    obj, mutate = builder
    return obj, owner, mutate


def _present_iff(
    deploy_manager: DeployManagerBase,
    builder: builders.Builder,
    owner: dict,
    present: bool,
):
    obj, mutate = builder
    if present:
        create_or_update(deploy_manager, obj, owner, mutate)
    else:
        delete_resource(deploy_manager, obj)
