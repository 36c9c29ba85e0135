"""
Management of the cert-manager Certificates for the service and route of a CR
"""

# Standard
from typing import Optional
import copy

# First Party
import alog

# Local
from . import constants
from .application import Application
from .capabilities import CERTIFICATE, is_kind_supported
from .convergence import create_or_update, delete_resource
from .deploy_manager import DeployManagerBase
from .exceptions import AppstacksError
from .status import (
    format_timestamp,
    get_condition,
    make_condition,
    manage_error,
    now,
    set_condition,
)
from .types import ReconciliationResult
from .utils import to_plain

log = alog.use_channel("CERTS")

## Public ######################################################################

DEFAULT_DURATION = "8760h"
DEFAULT_RENEW_BEFORE = "744h"


@alog.logged_function(log.debug)
def reconcile_certificates(
    deploy_manager: DeployManagerBase, app: Application
) -> Optional[ReconciliationResult]:
    """Converge the service and route Certificates of the CR

    Returns:
        result:  Optional[ReconciliationResult]
            None if the reconcile can continue, otherwise the result to return
    """
    try:
        if not is_kind_supported(deploy_manager, CERTIFICATE):
            log.debug2("cert-manager is not installed")
            return None
    except AppstacksError as err:
        return manage_error(
            deploy_manager, err, constants.RECONCILED_CONDITION, app
        )

    service_cert = app.get_service().get("certificate")
    route_cert = app.get_route().get("certificate") if app.get_expose() else None
    certificates = [
        (
            "service",
            f"{app.name}{constants.SERVICE_CERTIFICATE_SUFFIX}",
            service_cert,
            {
                "commonName": f"{app.name}.{app.namespace}.svc",
                "secretName": f"{app.name}{constants.SERVICE_TLS_SECRET_SUFFIX}",
            },
        ),
        (
            "route",
            f"{app.name}{constants.ROUTE_CERTIFICATE_SUFFIX}",
            route_cert,
            {
                "commonName": app.get_route().get("host"),
                "secretName": f"{app.name}{constants.ROUTE_TLS_SECRET_SUFFIX}",
            },
        ),
    ]

    for purpose, name, cert_config, defaults in certificates:
        obj = _certificate(name, app.namespace)
        try:
            if cert_config is None:
                delete_resource(deploy_manager, obj)
                continue
            current = create_or_update(
                deploy_manager,
                obj,
                app.to_dict(),
                _certificate_mutator(app, cert_config, defaults),
            )
        except AppstacksError as err:
            return manage_error(
                deploy_manager, err, constants.RECONCILED_CONDITION, app
            )

        if not is_certificate_ready(current):
            log.info("Waiting for %s certificate %s", purpose, name)
            return _wait_for_certificate(deploy_manager, app, purpose)

    return None


def is_certificate_ready(certificate: dict) -> bool:
    """A Certificate is ready once cert-manager reports Ready=True"""
    condition = get_condition("Ready", certificate.get("status") or {})
    return condition.get("status") == constants.CONDITION_TRUE


## Implementation Details ######################################################


def _certificate(name: str, namespace: str) -> dict:
    return {
        "apiVersion": CERTIFICATE.api_version,
        "kind": CERTIFICATE.kind,
        "metadata": {"name": name, "namespace": namespace},
    }


def _certificate_mutator(app: Application, cert_config: dict, defaults: dict):
    def mutate(certificate: dict):
        certificate["metadata"]["labels"] = app.get_labels()
        spec = copy.deepcopy(to_plain(cert_config))
        spec.setdefault("duration", DEFAULT_DURATION)
        spec.setdefault("renewBefore", DEFAULT_RENEW_BEFORE)
        for key, val in defaults.items():
            if not spec.get(key) and val:
                spec[key] = val
        if not spec.get("dnsNames") and spec.get("commonName"):
            spec["dnsNames"] = [spec["commonName"]]
        certificate["spec"] = spec

    return mutate


def _wait_for_certificate(
    deploy_manager: DeployManagerBase, app: Application, purpose: str
) -> ReconciliationResult:
    timestamp = format_timestamp(now())
    old_condition = get_condition(constants.RECONCILED_CONDITION, app.status)
    transition_time = old_condition.get("lastTransitionTime")
    if not transition_time or old_condition.get("status") != constants.CONDITION_FALSE:
        transition_time = timestamp
    set_condition(
        app.status,
        make_condition(
            constants.RECONCILED_CONDITION,
            constants.CONDITION_FALSE,
            reason=constants.CERTIFICATE_NOT_READY_REASON,
            message=f"Waiting for {purpose} certificate to be generated",
            last_transition_time=transition_time,
            last_update_time=timestamp,
        ),
    )
    if not app.update_status(deploy_manager):
        log.warning("Unable to update status for %s/%s", app.namespace, app.name)
    return ReconciliationResult.done()
