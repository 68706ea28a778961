"""
Filter engine.

A Filter names a predicate function and its string arguments. Filters in a
group are ANDed; a kind's groups are ORed. Whitelisted resources and
dependencies never survive filtering, whatever the groups say.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Sequence, Tuple

from .durations import parse_duration

logger = logging.getLogger(__name__)

_TRUE = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE = {"0", "f", "F", "false", "FALSE", "False"}


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class Filter:
    """A named predicate with ordered string arguments."""
    function: str
    # YAML turns "50" or "true" into numbers and booleans; filters compare text
    arguments: List[Any] = field(default_factory=list)

    def __post_init__(self):
        self.arguments = [_as_text(a) for a in self.arguments]

    def int_value(self, index: int) -> int:
        return int(self.arguments[index])

    def bool_value(self, index: int) -> bool:
        value = self.arguments[index]
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ValueError(f"Invalid boolean: {value!r}")

    def duration_value(self, index: int) -> timedelta:
        return parse_duration(self.arguments[index])

    def time_value(self, index: int) -> datetime:
        moment = datetime.fromisoformat(self.arguments[index].replace("Z", "+00:00"))
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment


FilterGroup = Dict[str, Filter]


def match_group(resource: Any, group: FilterGroup) -> bool:
    """True if the resource satisfies every filter in the group."""
    for f in group.values():
        if not resource.filter(f):
            return False
    return True


def match_config(resource: Any, groups: Dict[str, FilterGroup]) -> Tuple[bool, List[str]]:
    """
    Match a resource against a kind's filter groups.

    Args:
        resource: Resource to test
        groups: Filter groups by name

    Returns:
        Tuple of (matched, names of every group that matched). With no
        groups, or only empty ones, every resource matches.
    """
    non_empty = {name: group for name, group in groups.items() if group}
    if not non_empty:
        return True, []

    matched_names = [name for name, group in non_empty.items() if match_group(resource, group)]
    return bool(matched_names), matched_names


def is_whitelisted(resource: Any, whitelist_tag: str) -> bool:
    """A resource carrying the whitelist tag, with any value, is never reaped."""
    return resource.tagged(whitelist_tag)


@dataclass
class FilterOutcome:
    """Result of filtering a batch of resources."""
    matched: List[Any] = field(default_factory=list)
    whitelisted: Dict[Tuple[str, Any], int] = field(default_factory=lambda: defaultdict(int))
    dependencies: Dict[Tuple[str, Any], int] = field(default_factory=lambda: defaultdict(int))
    failed: List[Any] = field(default_factory=list)


def apply_filters(resources: Sequence[Any], config: Any, outcome: FilterOutcome = None) -> FilterOutcome:
    """
    Filter a batch of resources using the per-kind filter groups in config.

    A fault while evaluating one resource marks only that resource as
    non-matching; the rest of the batch is still filtered.

    Args:
        resources: Resources of any kind
        config: Reaper configuration (for_kind() and whitelist_tag)
        outcome: Existing outcome to accumulate counts into

    Returns:
        FilterOutcome with the surviving resources and exclusion counts
    """
    outcome = outcome if outcome is not None else FilterOutcome()

    for resource in resources:
        groups = config.for_kind(resource.kind).filter_groups
        try:
            matched, names = match_config(resource, groups)
        except Exception as e:
            logger.error(f"Filtering {resource.description_tiny()} failed, treating as non-matching: {e!r}")
            outcome.failed.append(resource)
            continue

        for name in names:
            resource.add_filter_group(name, groups[name])

        key = (resource.region, resource.kind)
        if is_whitelisted(resource, config.whitelist_tag):
            outcome.whitelisted[key] += 1
            continue
        if not matched:
            continue
        if resource.dependency:
            outcome.dependencies[key] += 1
            continue

        outcome.matched.append(resource)

    return outcome
