"""
This module implements custom exceptions
"""

# Standard
from enum import Enum

## Base Error ##################################################################


class AppstacksError(Exception):
    """Base class for all appstacks exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop the
        current reconciliation pass
        """
        return self._is_fatal_error


## Error Reasons ###############################################################


class ErrorReason(Enum):
    """The reasons an error can be classified as. The values match the reason
    strings the kubernetes api server reports and are written verbatim into
    the reason of a failed condition.
    """

    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    CONFLICT = "Conflict"
    INVALID = "Invalid"
    FORBIDDEN = "Forbidden"
    UNKNOWN = ""


## Fatal Errors ################################################################


class AppstacksFatalError(AppstacksError):
    """An AppstacksFatalError is one that indicates an unexpected failure
    during a reconciliation. It will be retried with backoff unless it is
    classified as invalid.
    """

    reason = ErrorReason.UNKNOWN

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(AppstacksFatalError):
    """Exception caused during usage of user-provided configuration"""


class ClusterError(AppstacksFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class ResourceNotFoundError(ClusterError):
    """The requested object (or its kind) does not exist in the cluster"""

    reason = ErrorReason.NOT_FOUND


class ResourceAlreadyExistsError(ClusterError):
    """A create was attempted for an object which already exists"""

    reason = ErrorReason.ALREADY_EXISTS


class ResourceConflictError(ClusterError):
    """A write was rejected because it was based on a stale resourceVersion"""

    reason = ErrorReason.CONFLICT


class ResourceInvalidError(ClusterError):
    """The object sent to the cluster can never be accepted as-is"""

    reason = ErrorReason.INVALID


class ResourceForbiddenError(ClusterError):
    """The operator is not allowed to perform the requested operation"""

    reason = ErrorReason.FORBIDDEN


class ValidationError(ResourceInvalidError):
    """Exception raised when a CR fails validation. Like any other invalid
    error, retrying will not help until the CR itself changes.
    """


## Expected Errors #############################################################


class AppstacksExpectedError(AppstacksError):
    """An AppstacksExpectedError is one that indicates an expected failure
    condition that should cause a reconciliation to terminate, but is expected
    to resolve in a subsequent reconciliation.
    """

    reason = ErrorReason.UNKNOWN

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PreconditionError(AppstacksExpectedError):
    """Exception caused when an expected precondition is not met"""


class DependencyError(AppstacksExpectedError):
    """Exception caused when a service binding dependency of the CR is not
    available yet
    """


## Classification ##############################################################


def classify_error(err: Exception) -> ErrorReason:
    """Get the reason that an error should be reported with

    Args:
        err:  Exception
            The error to classify

    Returns:
        reason:  ErrorReason
            The classified reason. Errors that are not cluster errors are
            UNKNOWN.
    """
    reason = getattr(err, "reason", None)
    if isinstance(reason, ErrorReason):
        return reason
    return ErrorReason.UNKNOWN


def is_conflict(err: Exception) -> bool:
    return classify_error(err) == ErrorReason.CONFLICT


def is_invalid(err: Exception) -> bool:
    return classify_error(err) == ErrorReason.INVALID


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError. This
    should be used when a step requires that a precondition is met before
    continuing.
    """
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when the library or operator configuration holds an unusable value.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    secret) must succeed.
    """
    if not condition:
        raise ClusterError(message)
