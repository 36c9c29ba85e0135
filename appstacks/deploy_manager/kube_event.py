"""
Helper module to define shared types related to Kube Events
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class KubeEventType(Enum):
    """Enum for all possible kubernetes event types. GENERIC covers
    notifications which are not tied to a change of the object, such as a
    periodic resync.
    """

    DELETED = "DELETED"
    MODIFIED = "MODIFIED"
    ADDED = "ADDED"
    GENERIC = "GENERIC"


@dataclass
class KubeWatchEvent:
    """DataClass containing the type, resource, and timestamp of a
    particular event. For MODIFIED events, old_resource holds the state from
    before the change when it is known.
    """

    type: KubeEventType
    resource: dict
    old_resource: Optional[dict] = None
    timestamp: datetime = field(default_factory=datetime.now)
