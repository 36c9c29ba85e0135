"""Standard data types used throughout the library"""

# Standard
from dataclasses import dataclass, field
from functools import cached_property
from typing import Optional
import datetime

# First Party
import alog

# Local
from . import config

log = alog.use_channel("TYPES")


@dataclass(eq=True, frozen=True)
class ResourceId:
    """Class containing the information needed to identify a resource"""

    api_version: str
    kind: str
    name: str = None
    namespace: str = None

    # Id properties

    @cached_property
    def group(self) -> str:
        """The api group of the resource. Core resources have an empty group."""
        parts = self.api_version.split("/")
        return parts[0] if len(parts) > 1 else ""

    @cached_property
    def version(self) -> str:
        return self.api_version.split("/")[-1]

    @cached_property
    def global_id(self) -> str:
        """Get the global_id for a resource in the form kind.version.group"""
        group_version = self.api_version.split("/")
        return ".".join([self.kind, *reversed(group_version)])

    @cached_property
    def namespaced_id(self) -> str:
        """Get the namespace specific id for a resource"""
        return f"{self.namespace}.{self.global_id}"

    # Helper Accessor functions
    def get_id(self) -> str:
        """Get the requisite id for a resource"""
        return self.namespaced_id if self.namespace else self.global_id

    def get_named_id(self) -> str:
        """Get a named id for a resouce"""
        return f"{self.name}.{self.get_id()}"

    def get_resource(self) -> dict:
        """Get a resource template from this id"""
        return {
            "kind": self.kind,
            "apiVersion": self.api_version,
            "metadata": {"name": self.name, "namespace": self.namespace},
        }

    # Helper Creation Functions
    @classmethod
    def from_resource(cls, resource: dict) -> "ResourceId":
        """Create a resource id from an existing resource"""
        metadata = resource.get("metadata", {})
        return cls(
            api_version=resource.get("apiVersion"),
            kind=resource.get("kind"),
            namespace=metadata.get("namespace"),
            name=metadata.get("name"),
        )

    @classmethod
    def from_kind_arg(cls, kind_arg: str) -> Optional["ResourceId"]:
        """Parse a kind identifier in the form Kind.version.group, which is
        the inverse of global_id for grouped kinds. Returns None if the string
        does not hold all three parts.
        """
        parts = kind_arg.split(".", 2)
        if len(parts) != 3 or not all(parts):
            log.debug2("Cannot parse kind identifier [%s]", kind_arg)
            return None
        kind, version, group = parts
        return cls(api_version=f"{group}/{version}", kind=kind)


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation step or of a
    full reconcile
    """

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Flag to identify if the reconciliation raised an exception
    exception: Exception = None

    @classmethod
    def done(cls) -> "ReconciliationResult":
        """A terminal result which is not requeued"""
        return cls(requeue=False)

    @classmethod
    def requeue_after(cls, seconds: float, exception: Exception = None):
        """A result which requeues after the given delay. Zero requeues
        immediately.
        """
        return cls(
            requeue=True,
            requeue_params=RequeueParams(
                requeue_after=datetime.timedelta(seconds=seconds)
            ),
            exception=exception,
        )
