"""
This module holds the status condition engine which records the outcome of a
reconcile on the CR and derives the requeue backoff from the condition
timestamps.

Two condition types are managed:

* Reconciled: True if the last reconcile converged all children
* DependenciesSatisfied: True if all service binding dependencies resolved

Each condition has the schema:
{
    "type": "Reconciled",
    "status": "True" | "False" | "Unknown",
    "reason": "<classified error reason>",
    "message": "<error message>",
    "lastTransitionTime": "<RFC3339>",
    "lastUpdateTime": "<RFC3339>",
}

The backoff has no stored counter. The time since the previous report doubles
on every consecutive failure, so the requeue delay is twice that time, capped
by the max_backoff_seconds config.
"""

# Standard
from datetime import datetime, timezone
from typing import Optional
import copy

# Third Party
from dateutil import parser as date_parser

# First Party
import alog

# Local
from . import config, constants
from .exceptions import classify_error, is_conflict, is_invalid
from .types import ReconciliationResult

log = alog.use_channel("STTUS")

## Public ######################################################################

# The keys in the condition used for the timestamps
TRANSITION_TIMESTAMP_KEY = "lastTransitionTime"
UPDATE_TIMESTAMP_KEY = "lastUpdateTime"

# The delay for the first failure after success and for failed status writes
BASE_BACKOFF_SECONDS = 1


def now() -> datetime:
    """The current time at the second precision of condition timestamps"""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(timestamp: datetime) -> str:
    """Format a timestamp as an RFC3339 string in UTC"""
    return timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(timestamp: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 timestamp. Empty values parse to None."""
    if not timestamp:
        return None
    parsed = date_parser.isoparse(timestamp)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def make_condition(  # pylint: disable=too-many-arguments
    condition_type: str,
    status: str,
    reason: str = "",
    message: str = "",
    last_transition_time: Optional[str] = None,
    last_update_time: Optional[str] = None,
) -> dict:
    """Create a single status condition

    Args:
        condition_type:  str
            The type of the condition (e.g. Reconciled)
        status:  str
            One of "True", "False" or "Unknown"
        reason:  str
            Machine readable reason for the status
        message:  str
            Human readable message explaining the status
        last_transition_time:  Optional[str]
            The time when the status last changed
        last_update_time:  Optional[str]
            The time when the condition was last written

    Returns:
        condition:  dict
            The condition object
    """
    condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
    }
    if last_transition_time:
        condition[TRANSITION_TIMESTAMP_KEY] = last_transition_time
    if last_update_time:
        condition[UPDATE_TIMESTAMP_KEY] = last_update_time
    return condition


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status for a given application

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in (current_status or {}).get(constants.STATUS_CONDITIONS) or []
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


def set_condition(current_status: dict, condition: dict) -> dict:
    """Place the condition in the status, replacing the existing condition of
    the same type. The status is modified in place and returned.
    """
    conditions = [
        cond
        for cond in current_status.get(constants.STATUS_CONDITIONS) or []
        if cond.get("type") != condition["type"]
    ]
    conditions.append(condition)
    current_status[constants.STATUS_CONDITIONS] = conditions
    return current_status


def compute_backoff(previous_condition: dict, current_time: datetime) -> float:
    """Compute the requeue delay for a failure given the condition that was
    in place before it

    Args:
        previous_condition:  dict
            The condition before the failure was recorded
        current_time:  datetime
            The time of the failure

    Returns:
        delay:  float
            The number of seconds to wait before the next attempt
    """
    last_update = parse_timestamp(previous_condition.get(UPDATE_TIMESTAMP_KEY))
    if (
        last_update is None
        or previous_condition.get("status") == constants.CONDITION_TRUE
    ):
        log.debug3("First failure in a streak")
        return float(BASE_BACKOFF_SECONDS)

    base = max(
        round((current_time - last_update).total_seconds()), BASE_BACKOFF_SECONDS
    )
    delay = min(2 * base, config.max_backoff_seconds)
    log.debug3("Backoff base: %ds, delay: %ds", base, delay)
    return float(delay)


@alog.logged_function(log.debug2)
def manage_error(
    deploy_manager: "DeployManagerBase",  # noqa: F821
    err: Exception,
    condition_type: str,
    app: "Application",  # noqa: F821
) -> ReconciliationResult:
    """Record a failure on the given condition of the CR and compute how the
    reconcile should be requeued

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to emit the event and write the status
        err:  Exception
            The error that caused the failure
        condition_type:  str
            The condition to set to False
        app:  Application
            The CR being reconciled. Its status is updated in place.

    Returns:
        result:  ReconciliationResult
            Terminal for invalid errors. Otherwise a requeue with a backoff
            derived from the previous condition.
    """
    log.warning(
        "Error reconciling %s/%s [%s]: %s", app.namespace, app.name, condition_type, err
    )
    deploy_manager.record_event(
        app.to_dict(),
        constants.EVENT_TYPE_WARNING,
        constants.EVENT_REASON_PROCESSING_ERROR,
        str(err),
    )

    current_time = now()
    timestamp = format_timestamp(current_time)
    old_condition = copy.deepcopy(get_condition(condition_type, app.status))
    transition_time = old_condition.get(TRANSITION_TIMESTAMP_KEY)
    if (
        not transition_time
        or old_condition.get("status") == constants.CONDITION_TRUE
    ):
        transition_time = timestamp

    set_condition(
        app.status,
        make_condition(
            condition_type,
            constants.CONDITION_FALSE,
            reason=classify_error(err).value,
            message=str(err),
            last_transition_time=transition_time,
            last_update_time=timestamp,
        ),
    )

    if not app.update_status(deploy_manager):
        log.warning("Unable to update status for %s/%s", app.namespace, app.name)
        if is_conflict(err):
            return ReconciliationResult.requeue_after(0, exception=err)
        return ReconciliationResult.requeue_after(BASE_BACKOFF_SECONDS, exception=err)

    # Invalid data will not become valid by retrying
    if is_invalid(err):
        log.debug("Not requeueing invalid error")
        return ReconciliationResult(requeue=False, exception=err)

    return ReconciliationResult.requeue_after(
        compute_backoff(old_condition, current_time), exception=err
    )


@alog.logged_function(log.debug2)
def manage_success(
    deploy_manager: "DeployManagerBase",  # noqa: F821
    condition_type: str,
    app: "Application",  # noqa: F821
) -> ReconciliationResult:
    """Record a success on the given condition of the CR

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to write the status
        condition_type:  str
            The condition to set to True
        app:  Application
            The CR being reconciled. Its status is updated in place.

    Returns:
        result:  ReconciliationResult
            Not requeued unless the status could not be written
    """
    timestamp = format_timestamp(now())
    old_condition = get_condition(condition_type, app.status)
    transition_time = old_condition.get(TRANSITION_TIMESTAMP_KEY)
    if not transition_time or old_condition.get("status") == constants.CONDITION_FALSE:
        transition_time = timestamp

    set_condition(
        app.status,
        make_condition(
            condition_type,
            constants.CONDITION_TRUE,
            last_transition_time=transition_time,
            last_update_time=timestamp,
        ),
    )
    if not app.update_status(deploy_manager):
        log.warning("Unable to update status for %s/%s", app.namespace, app.name)
        return ReconciliationResult.requeue_after(BASE_BACKOFF_SECONDS)
    return ReconciliationResult.done()
