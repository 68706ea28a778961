"""
Shared resource model and the registry of reapable resources.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .errors import NotFound, UnsupportedAction
from .filters import Filter, FilterGroup
from .state import State, StateDurations, truncate, utcnow

logger = logging.getLogger(__name__)

CLOUDFORMATION_STACK_TAG = "aws:cloudformation:stack-name"


class ResourceKind(Enum):
    """The closed set of resource kinds the reaper handles."""
    INSTANCE = "instance"
    AUTOSCALING_GROUP = "autoscaling_group"
    SECURITY_GROUP = "security_group"
    VOLUME = "volume"
    CLOUDFORMATION = "cloudformation"

    @property
    def stat_name(self) -> str:
        """Plural used in statistic names, e.g. reaper.instances.total."""
        return {
            ResourceKind.INSTANCE: "instances",
            ResourceKind.AUTOSCALING_GROUP: "asgs",
            ResourceKind.SECURITY_GROUP: "securitygroups",
            ResourceKind.VOLUME: "volumes",
            ResourceKind.CLOUDFORMATION: "cloudformations",
        }[self]

    @property
    def label(self) -> str:
        """Human-readable name used in notifications."""
        return {
            ResourceKind.INSTANCE: "Instance",
            ResourceKind.AUTOSCALING_GROUP: "AutoScalingGroup",
            ResourceKind.SECURITY_GROUP: "SecurityGroup",
            ResourceKind.VOLUME: "Volume",
            ResourceKind.CLOUDFORMATION: "Cloudformation",
        }[self]


FilterFunction = Callable[[Filter], bool]


class Reapable(ABC):
    """
    Identity, tags, dependency flags and lifecycle state shared by every
    resource kind.

    Subclasses add their own fields, filter functions and provider mutations.
    """

    kind: ResourceKind

    def __init__(
        self,
        region: str,
        resource_id: str,
        name: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
        created_time: Optional[datetime] = None,
    ):
        self.region = region
        self.id = resource_id
        self.name = name
        self.tags: Dict[str, str] = dict(tags or {})
        self.created_time = truncate(created_time) if created_time else None
        self.dependency = False
        self.is_in_cloudformation = False
        self.owner: Optional[str] = None
        self.matched_filter_groups: Dict[str, FilterGroup] = {}
        self.reaper_state: State = State.new()

        if self.tagged(CLOUDFORMATION_STACK_TAG):
            self.mark_in_cloudformation()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.region}/{self.id}>"

    # -- tags ---------------------------------------------------------------

    def tagged(self, key: str) -> bool:
        return key in self.tags

    def tag(self, key: str) -> str:
        return self.tags.get(key, "")

    # -- flags and state ----------------------------------------------------

    def mark_in_cloudformation(self) -> None:
        """A stack-managed resource is always a dependency."""
        self.is_in_cloudformation = True
        self.dependency = True

    def mark_dependency(self) -> None:
        self.dependency = True

    def restore_state(self, state_tag: str, now: Optional[datetime] = None,
                      durations: Optional[StateDurations] = None) -> None:
        """
        Initialise the lifecycle state from the state tag, if present.

        A resource seen for the first time starts at FIRST with the state
        marked updated, so the tagger writes it and the FIRST timer is not
        restarted next cycle.
        """
        if self.tagged(state_tag):
            self.reaper_state = State.from_tag(self.tag(state_tag), now, durations)
        else:
            self.reaper_state = State.new(now, durations)
            self.reaper_state.updated = True

    def set_reaper_state(self, state: State) -> None:
        self.reaper_state = state

    def increment_state(self, now: datetime, durations: StateDurations) -> bool:
        return self.reaper_state.advance_if_due(now, durations)

    def add_filter_group(self, name: str, group: FilterGroup) -> None:
        self.matched_filter_groups[name] = group

    # -- descriptions -------------------------------------------------------

    def description_tiny(self) -> str:
        return f"{self.kind.label} {self.id}"

    def description_short(self) -> str:
        name = f" \"{self.name}\"" if self.name and self.name != self.id else ""
        return f"{self.kind.label} {self.id}{name} in {self.region}"

    def description(self) -> str:
        owner = f" owned by {self.owner}" if self.owner else ""
        return (f"{self.description_short()}{owner}, state {self.reaper_state.state} "
                f"until {self.reaper_state.until.isoformat()}")

    def console_url(self) -> str:
        return f"https://{self.region}.console.aws.amazon.com/ec2/v2/home?region={self.region}"

    # -- filtering ----------------------------------------------------------

    def filter(self, f: Filter) -> bool:
        """
        Evaluate one filter against this resource.

        Unknown functions and unparseable arguments are non-matching. Other
        faults (such as a missing argument) propagate to the caller, which
        treats the whole resource as non-matching.
        """
        function = self.filter_functions().get(f.function)
        if function is None:
            logger.error(f"No function {f.function} could be found for filtering {self.kind.label}s.")
            return False
        try:
            return bool(function(f))
        except ValueError as e:
            logger.warning(f"Filter {f.function}{f.arguments} on {self.description_tiny()} has a bad argument: {e}")
            return False

    def filter_functions(self) -> Dict[str, FilterFunction]:
        """Filter functions available for every kind."""
        return {
            "Region": lambda f: self.region in f.arguments,
            "NotRegion": lambda f: self.region not in f.arguments,
            "Tagged": lambda f: self.tagged(f.arguments[0]),
            "NotTagged": lambda f: not self.tagged(f.arguments[0]),
            "TagNotEqual": lambda f: self.tag(f.arguments[0]) != f.arguments[1],
            "ReaperState": lambda f: self.reaper_state.state.value == f.arguments[0],
            "NotReaperState": lambda f: self.reaper_state.state.value != f.arguments[0],
            "Named": lambda f: (self.name or "") == f.arguments[0],
            "NotNamed": lambda f: (self.name or "") != f.arguments[0],
            "NameContains": lambda f: f.arguments[0] in (self.name or ""),
            "NotNameContains": lambda f: f.arguments[0] not in (self.name or ""),
            "IsDependency": lambda f: self.dependency == f.bool_value(0),
            "InCloudformation": lambda f: self.is_in_cloudformation == f.bool_value(0),
            "CreatedTimeInTheLast": lambda f: self._age_below(self.created_time, f.duration_value(0)),
            "CreatedTimeNotInTheLast": lambda f: self._age_above(self.created_time, f.duration_value(0)),
        }

    @staticmethod
    def _age_below(moment: Optional[datetime], limit: timedelta) -> bool:
        return moment is not None and utcnow() - moment < limit

    @staticmethod
    def _age_above(moment: Optional[datetime], limit: timedelta) -> bool:
        return moment is not None and utcnow() - moment > limit

    # -- mutations ----------------------------------------------------------

    @abstractmethod
    def terminate(self) -> bool:
        """Delete the resource at the provider."""

    def stop(self) -> bool:
        raise UnsupportedAction(f"{self.kind.label}s cannot be stopped")

    def force_stop(self) -> bool:
        return self.stop()

    @abstractmethod
    def tag_resource(self, key: str, value: str) -> bool:
        """Write a tag at the provider and mirror it locally."""

    @abstractmethod
    def untag_resource(self, key: str) -> bool:
        """Remove a tag at the provider and locally."""

    def whitelist(self, whitelist_tag: str) -> bool:
        logger.info(f"Whitelisting {self.description_tiny()}")
        return self.tag_resource(whitelist_tag, "true")

    def save(self, state_tag: str) -> bool:
        """Write the current lifecycle state to the state tag."""
        return self.tag_resource(state_tag, self.reaper_state.serialize())

    def unsave(self, state_tag: str) -> bool:
        logger.info(f"Unsaving {self.description_tiny()}")
        return self.untag_resource(state_tag)

    def scale_down(self) -> bool:
        raise UnsupportedAction(f"{self.kind.label}s cannot be scheduled")

    def scale_up(self) -> bool:
        raise UnsupportedAction(f"{self.kind.label}s cannot be scheduled")


class Reapables:
    """
    Thread-safe registry of reapable resources keyed by (region, id).

    Entries are replaced wholesale by put(); nothing is removed during a run.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[Tuple[str, str], Reapable] = {}

    def put(self, region: str, resource_id: str, resource: Reapable) -> None:
        with self._lock:
            self._entries[(region, resource_id)] = resource

    def get(self, region: str, resource_id: str) -> Reapable:
        with self._lock:
            resource = self._entries.get((region, resource_id))
        if resource is None:
            raise NotFound(region, resource_id)
        return resource

    def __contains__(self, key: Tuple[str, str]) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def items(self) -> List[Tuple[Tuple[str, str], Reapable]]:
        """A snapshot of the registry, safe to iterate while writers run."""
        with self._lock:
            return list(self._entries.items())

    def __iter__(self) -> Iterator[Reapable]:
        return iter([resource for _, resource in self.items()])
