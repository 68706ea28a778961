"""
Dependency and ownership inference.

One pass per reap cycle over every resource kind, in an order where each
kind can rely on facts collected from the kinds before it:

    stacks -> autoscaling groups -> instances -> security groups -> volumes

Stacks mark what they manage, groups mark their member instances, instances
mark the security groups they use. Whatever is marked is a dependency and is
never reaped on its own. Each resource is also filed under its owner.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from .reapable import Reapable, ResourceKind
from .tags import owner_address

logger = logging.getLogger(__name__)

INFERENCE_ORDER = (
    ResourceKind.CLOUDFORMATION,
    ResourceKind.AUTOSCALING_GROUP,
    ResourceKind.INSTANCE,
    ResourceKind.SECURITY_GROUP,
    ResourceKind.VOLUME,
)


def _region_sets() -> Dict[str, Set[str]]:
    return defaultdict(set)


@dataclass
class CycleContext:
    """Facts collected during one cycle; discarded when the cycle ends."""
    dependency: Dict[str, Set[str]] = field(default_factory=_region_sets)
    in_cloudformation: Dict[str, Set[str]] = field(default_factory=_region_sets)
    in_group: Dict[str, Set[str]] = field(default_factory=_region_sets)

    def is_dependency(self, region: str, *keys: Optional[str]) -> bool:
        return any(key and key in self.dependency[region] for key in keys)

    def is_in_cloudformation(self, region: str, *keys: Optional[str]) -> bool:
        return any(key and key in self.in_cloudformation[region] for key in keys)


@dataclass
class InferenceResult:
    owned: Dict[str, List[Reapable]] = field(default_factory=lambda: defaultdict(list))
    unowned: List[Reapable] = field(default_factory=list)
    context: CycleContext = field(default_factory=CycleContext)


class Inference:
    """Runs the dependency and ownership pass for one cycle."""

    def __init__(self, config: Any, on_schedule: Optional[Callable[[Reapable], None]] = None):
        self.config = config
        self.on_schedule = on_schedule
        self.result = InferenceResult()

    @property
    def context(self) -> CycleContext:
        return self.result.context

    def run(self, streams: Mapping[ResourceKind, Iterable[Reapable]]) -> InferenceResult:
        """
        Consume every stream in inference order.

        Args:
            streams: Resources per kind; missing kinds are treated as empty

        Returns:
            Owned resources by owner address, and unowned resources
        """
        handlers = {
            ResourceKind.CLOUDFORMATION: self._cloudformation,
            ResourceKind.AUTOSCALING_GROUP: self._autoscaling_group,
            ResourceKind.INSTANCE: self._instance,
            ResourceKind.SECURITY_GROUP: self._security_group,
            ResourceKind.VOLUME: self._volume,
        }
        for kind in INFERENCE_ORDER:
            handle = handlers[kind]
            for resource in streams.get(kind, ()):
                handle(resource)
                self._file(resource)
        return self.result

    def _cloudformation(self, stack) -> None:
        for physical_id in stack.resources:
            self.context.dependency[stack.region].add(physical_id)
            self.context.in_cloudformation[stack.region].add(physical_id)

    def _autoscaling_group(self, group) -> None:
        ctx = self.context
        # the API names groups by id in some places and by name in others
        if ctx.is_in_cloudformation(group.region, group.id, group.name):
            group.mark_in_cloudformation()
        if ctx.is_dependency(group.region, group.id, group.name):
            group.mark_dependency()

        for instance_id in group.instances:
            if instance_id in ctx.in_cloudformation[group.region]:
                group.mark_in_cloudformation()
            ctx.in_group[group.region].add(instance_id)
            ctx.dependency[group.region].add(instance_id)

        self._schedule(group)

    def _instance(self, instance) -> None:
        ctx = self.context
        for group_id, group_name in instance.security_groups.items():
            ctx.dependency[instance.region].add(group_id)
            if group_name:
                ctx.dependency[instance.region].add(group_name)

        if ctx.is_dependency(instance.region, instance.id):
            instance.mark_dependency()
        if ctx.is_in_cloudformation(instance.region, instance.id):
            instance.mark_in_cloudformation()
        if instance.id in ctx.in_group[instance.region]:
            instance.autoscaled = True

        self._schedule(instance)

    def _security_group(self, group) -> None:
        ctx = self.context
        if ctx.is_in_cloudformation(group.region, group.id):
            group.mark_in_cloudformation()
        if ctx.is_dependency(group.region, group.id, group.group_name):
            group.mark_dependency()

    def _volume(self, volume) -> None:
        ctx = self.context
        if ctx.is_in_cloudformation(volume.region, volume.id):
            volume.mark_in_cloudformation()
        if ctx.is_dependency(volume.region, volume.id) or volume.attached_instance_ids:
            volume.mark_dependency()

    def _schedule(self, resource) -> None:
        if resource.scheduling and self.on_schedule is not None:
            if self.config.log_extras:
                down, up = resource.scheduling
                logger.info(f"{resource.description_tiny()} is going to be scaled down: {down} and scaled up: {up}.")
            self.on_schedule(resource)

    def _file(self, resource: Reapable) -> None:
        """Record the owner and file the resource, if its kind is enabled."""
        resource.owner = owner_address(
            resource.tags,
            owner_tag=self.config.owner_tag,
            default_email_host=self.config.default_email_host,
            default_owner=self.config.default_owner,
        )
        if not self.config.for_kind(resource.kind).enabled:
            return
        if resource.owner:
            self.result.owned[resource.owner].append(resource)
        else:
            self.result.unowned.append(resource)


def infer(streams: Mapping[ResourceKind, Iterable[Reapable]], config: Any,
          on_schedule: Optional[Callable[[Reapable], None]] = None) -> InferenceResult:
    """Run the dependency and ownership pass over one cycle's streams."""
    return Inference(config, on_schedule).run(streams)
