"""
Reap cycle orchestration and owner actions.

One cycle:

1. Every kind is discovered on its own KindStream thread. Saved states are
   applied as resources arrive: those loaded from the state file, overlaid
   with the registry states left by earlier cycles and owner actions.
2. Inference marks dependencies and files resources by owner.
3. Owner buckets and the unowned list are filtered. An owner left with a
   single resource gets an individual event instead of a batch.
4. Survivors advance their lifecycle state and enter the registry.
5. Events and statistics go out on a background executor.
"""

import logging
import queue
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import requests

from . import prices as prices_module
from . import statefile
from .aws.discovery import AWSDiscovery, Discovery
from .cron import CronExpression
from .errors import UnsupportedAction
from .events import EventDispatcher, build_dispatcher
from .filters import FilterOutcome, apply_filters
from .inference import INFERENCE_ORDER, infer
from .reapable import Reapable, Reapables, ResourceKind
from .scheduler import ResourceSchedules
from .state import truncate, utcnow
from .tags import format_schedule_tag
from .token import ActionToken, JobType

logger = logging.getLogger(__name__)

_DONE = object()

Counts = Dict[Tuple[str, ResourceKind], int]


def _sub_attribute(resource: Reapable) -> Optional[str]:
    """The per-kind attribute discovery totals are broken down by."""
    if resource.kind is ResourceKind.INSTANCE:
        if resource.terminated() or resource.stopped():
            return None
        return f"instancetype:{resource.instance_type}"
    if resource.kind is ResourceKind.AUTOSCALING_GROUP:
        return f"size:{resource.desired_capacity}"
    if resource.kind is ResourceKind.VOLUME:
        return f"size:{resource.size}"
    if resource.kind is ResourceKind.CLOUDFORMATION:
        return f"status:{resource.stack_status}"
    return None


class KindStream:
    """
    Discovers one resource kind on a background thread.

    Resources are handed to the consumer through a bounded queue. A producer
    that fails ends its stream early; whatever it produced is still used.
    When the producer is exhausted, on_summary receives the per-region and
    per-sub-attribute totals before the consumer sees the end of the stream.
    """

    def __init__(self, kind: ResourceKind, producer: Callable[[], Iterable[Reapable]],
                 saved_states: Optional[Dict[Tuple[str, str], Any]] = None,
                 on_summary: Optional[Callable[..., None]] = None, maxsize: int = 100,
                 log_extras: bool = False):
        self.kind = kind
        self.producer = producer
        self.saved_states = saved_states or {}
        self.on_summary = on_summary
        self.log_extras = log_extras
        self.queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self.region_sums: Dict[str, int] = defaultdict(int)
        self.sub_sums: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.thread: Optional[threading.Thread] = None

    def start(self) -> "KindStream":
        self.thread = threading.Thread(target=self._produce, name=f"awsreaper-{self.kind.value}", daemon=True)
        self.thread.start()
        return self

    def _produce(self) -> None:
        try:
            for resource in self.producer():
                saved = self.saved_states.get((resource.region, resource.id))
                if saved is not None:
                    resource.set_reaper_state(saved.copy())
                self.region_sums[resource.region] += 1
                attribute = _sub_attribute(resource)
                if attribute:
                    self.sub_sums[resource.region][attribute] += 1
                if self.log_extras:
                    logger.info(f"Discovered {resource.description_short()}")
                self.queue.put(resource)
        except Exception as e:
            logger.error(f"Discovery of {self.kind.value} stopped early: {e}")
        finally:
            for region, total in self.region_sums.items():
                logger.info(f"Found {total} total {self.kind.label}s in {region}")
            if self.on_summary is not None:
                try:
                    self.on_summary(self.kind, dict(self.region_sums),
                                    {r: dict(s) for r, s in self.sub_sums.items()})
                except Exception as e:
                    logger.error(f"Could not post {self.kind.value} totals: {e}")
            self.queue.put(_DONE)

    def __iter__(self) -> Iterator[Reapable]:
        if self.thread is None:
            self.start()
        while True:
            item = self.queue.get()
            if item is _DONE:
                return
            yield item


@dataclass
class ReapResult:
    filtered: List[Reapable] = field(default_factory=list)
    owner_batches: Dict[str, List[Reapable]] = field(default_factory=dict)
    individual: List[Reapable] = field(default_factory=list)
    counts: Counts = field(default_factory=lambda: defaultdict(int))
    outcome: FilterOutcome = field(default_factory=FilterOutcome)
    futures: List[Future] = field(default_factory=list)

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until background dispatch and statistics are done."""
        for future in list(self.futures):
            future.exception(timeout)


def _merge(total: FilterOutcome, part: FilterOutcome) -> None:
    for key, count in part.whitelisted.items():
        total.whitelisted[key] += count
    for key, count in part.dependencies.items():
        total.dependencies[key] += count
    total.failed.extend(part.failed)


class Reaper:
    """Runs reap cycles and performs owner actions on registered resources."""

    def __init__(self, config: Any, discovery: Optional[Discovery] = None,
                 dispatcher: Optional[EventDispatcher] = None, registry: Optional[Reapables] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.config = config
        self.discovery = discovery
        self.dispatcher = dispatcher if dispatcher is not None else build_dispatcher(config)
        self.registry = registry if registry is not None else Reapables()
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="awsreaper-events")
        self.schedules = ResourceSchedules(dry_run=config.dry_run)
        # replaced wholesale, never mutated in place
        self.saved_states: Dict[Tuple[str, str], Any] = {}
        self.prices: prices_module.PricesMap = {}
        self._futures_lock = threading.Lock()
        self._futures: List[Future] = []

    # -- background work ------------------------------------------------------

    def _submit(self, fn: Callable, *args) -> Future:
        future = self.executor.submit(fn, *args)
        with self._futures_lock:
            self._futures.append(future)
        return future

    def _tags(self, *extra: str) -> List[str]:
        tags = list(extra)
        if self.config.event_tag:
            tags.append(self.config.event_tag)
        return tags

    def _post_totals(self, kind: ResourceKind, region_sums: Dict[str, int],
                     sub_sums: Dict[str, Dict[str, int]]) -> None:
        self._submit(self._send_totals, kind, region_sums, sub_sums, self.prices)

    def _send_totals(self, kind: ResourceKind, region_sums: Dict[str, int],
                     sub_sums: Dict[str, Dict[str, int]], prices: prices_module.PricesMap) -> None:
        name = f"reaper.{kind.stat_name}.total"
        for region, total in region_sums.items():
            self.dispatcher.new_statistic(name, float(total), self._tags(f"region:{region}"))
        for region, attributes in sub_sums.items():
            for attribute, total in attributes.items():
                self.dispatcher.new_statistic(name, float(total), self._tags(f"region:{region},{attribute}"))
                if kind is ResourceKind.INSTANCE and prices:
                    self._send_cost(region, attribute, total, prices)

    def _send_cost(self, region: str, attribute: str, count: int, prices: prices_module.PricesMap) -> None:
        instance_type = attribute.split(":", 1)[1]
        try:
            cost = prices_module.total_cost(prices, region, instance_type, count)
        except KeyError:
            logger.error(f"No price for {instance_type} in {region}")
            return
        except ValueError as e:
            logger.error(f"Bad price for {instance_type} in {region}: {e}")
            return
        self.dispatcher.new_statistic("reaper.instances.totalcost", cost,
                                      self._tags(f"region:{region},{attribute}"))

    def _dispatch(self, owner_batches: Dict[str, List[Reapable]], individual: List[Reapable]) -> None:
        for owner, resources in owner_batches.items():
            try:
                self.dispatcher.new_batch_reapable_event(resources, self._tags())
            except Exception as e:
                logger.error(f"Batch event for {owner} failed: {e}")
        for resource in individual:
            try:
                self.dispatcher.new_reapable_event(resource, self._tags())
            except Exception as e:
                logger.error(f"Event for {resource.description_tiny()} failed: {e}")

    def _send_statistics(self, counts: Counts, outcome: FilterOutcome) -> None:
        for (region, kind), total in counts.items():
            self.dispatcher.new_statistic(f"reaper.{kind.stat_name}.filtered", float(total),
                                          self._tags(f"region:{region}"))
        for (region, kind), total in outcome.whitelisted.items():
            self.dispatcher.new_statistic(f"reaper.{kind.stat_name}.whitelistedCount", float(total),
                                          self._tags(f"region:{region}"))

    # -- the cycle --------------------------------------------------------------

    def _rebuild_saved_states(self) -> None:
        """
        Carry the states of registered resources into the next cycle.

        Registry states include escalations from earlier cycles and owner
        actions taken since, so they win over what was loaded at startup.
        """
        states = dict(self.saved_states)
        for resource in self.registry:
            state = resource.reaper_state.copy()
            state.updated = False
            states[(resource.region, resource.id)] = state
        self.saved_states = states

    def streams(self, now: datetime) -> Dict[ResourceKind, KindStream]:
        discovery = self.discovery or AWSDiscovery(self.config, now)
        return {
            kind: KindStream(kind, discovery.for_kind(kind), self.saved_states,
                             self._post_totals, log_extras=self.config.log_extras).start()
            for kind in INFERENCE_ORDER
        }

    def reap(self, now: Optional[datetime] = None) -> ReapResult:
        """
        Run one reap cycle.

        Args:
            now: Cycle time; defaults to the current time

        Returns:
            ReapResult with the survivors and the background futures
        """
        now = truncate(now or utcnow())
        durations = self.config.durations()
        with self._futures_lock:
            self._futures = []
        self._rebuild_saved_states()

        inference = infer(self.streams(now), self.config, on_schedule=self.schedules.register_resource)

        result = ReapResult()
        singles: List[Reapable] = []
        for owner, resources in inference.owned.items():
            outcome = apply_filters(resources, self.config)
            _merge(result.outcome, outcome)
            if len(outcome.matched) == 1:
                singles.extend(outcome.matched)
                continue
            if outcome.matched:
                result.owner_batches[owner] = outcome.matched

        unowned = apply_filters(inference.unowned, self.config)
        _merge(result.outcome, unowned)
        result.individual = unowned.matched + singles

        for resources in result.owner_batches.values():
            result.filtered.extend(resources)
        result.filtered.extend(result.individual)
        result.outcome.matched = list(result.filtered)

        for resource in result.filtered:
            resource.increment_state(now, durations)
            self.registry.put(resource.region, resource.id, resource)
            result.counts[(resource.region, resource.kind)] += 1

        logger.info(f"Reap cycle at {now.isoformat()}: {len(result.filtered)} resources match, "
                    f"{len(result.owner_batches)} owner batches, {len(result.individual)} individual")

        self._submit(self._dispatch, dict(result.owner_batches), list(result.individual))
        self._submit(self._send_statistics, dict(result.counts), result.outcome)

        with self._futures_lock:
            result.futures = list(self._futures)
        return result

    def run(self, now: Optional[datetime] = None) -> ReapResult:
        """One cycle, then persist the registry if a state file is configured."""
        result = self.reap(now)
        if self.config.state_file:
            statefile.save_state(self.config.state_file, self.registry)
        return result

    def load_state(self, path: Optional[str] = None) -> int:
        path = path or self.config.state_file
        if not path:
            return 0
        self.saved_states = statefile.load_state(path)
        return len(self.saved_states)

    def refresh_prices(self) -> bool:
        """Download prices; on failure the previous map is kept."""
        if not self.config.prices_url:
            return False
        try:
            self.prices = prices_module.download_prices_map(self.config.prices_url)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Could not download prices from {self.config.prices_url}: {e}")
            return False
        logger.info(f"Downloaded prices for {len(self.prices)} regions")
        return True

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)

    # -- owner actions ----------------------------------------------------------

    def terminate(self, region: str, resource_id: str) -> Reapable:
        resource = self.registry.get(region, resource_id)
        resource.terminate()
        logger.info(f"Terminated {resource.description_short()}")
        return resource

    def stop(self, region: str, resource_id: str) -> Reapable:
        resource = self.registry.get(region, resource_id)
        resource.stop()
        logger.info(f"Stopped {resource.description_short()}")
        return resource

    def force_stop(self, region: str, resource_id: str) -> Reapable:
        resource = self.registry.get(region, resource_id)
        resource.force_stop()
        logger.info(f"Force-stopped {resource.description_short()}")
        return resource

    def whitelist(self, region: str, resource_id: str) -> Reapable:
        resource = self.registry.get(region, resource_id)
        resource.whitelist(self.config.whitelist_tag)
        return resource

    def ignore(self, region: str, resource_id: str, duration: timedelta,
               now: Optional[datetime] = None) -> Reapable:
        """Snooze a resource and write the new state to its state tag."""
        resource = self.registry.get(region, resource_id)
        resource.reaper_state.set_ignore(duration, now)
        resource.save(self.config.state_tag)
        logger.info(f"Ignoring {resource.description_tiny()} until {resource.reaper_state.until.isoformat()}")
        return resource

    def schedule(self, region: str, resource_id: str, scale_down: str, scale_up: str) -> Reapable:
        """
        Bind a scale-down/scale-up schedule to an instance or autoscaling group.

        Raises:
            ValueError: If either cron expression is invalid
            UnsupportedAction: If the kind cannot be scheduled
        """
        resource = self.registry.get(region, resource_id)
        if resource.kind not in (ResourceKind.INSTANCE, ResourceKind.AUTOSCALING_GROUP):
            raise UnsupportedAction(f"{resource.kind.label}s cannot be scheduled")
        CronExpression.parse(scale_down)
        CronExpression.parse(scale_up)

        resource.tag_resource(self.config.schedule_tag, format_schedule_tag(scale_down, scale_up))
        resource.scheduling = (scale_down, scale_up)
        self.schedules.register(resource, scale_down, scale_up)
        return resource

    def execute(self, action_token: ActionToken) -> Reapable:
        """Perform the action a verified token names."""
        region, resource_id = action_token.region, action_token.id
        action = action_token.action
        if action is JobType.TERMINATE:
            return self.terminate(region, resource_id)
        if action is JobType.STOP:
            return self.stop(region, resource_id)
        if action is JobType.FORCE_STOP:
            return self.force_stop(region, resource_id)
        if action is JobType.WHITELIST:
            return self.whitelist(region, resource_id)
        if action is JobType.DELAY:
            return self.ignore(region, resource_id, action_token.duration)
        if action is JobType.SCHEDULE:
            return self.schedule(region, resource_id, action_token.scale_down, action_token.scale_up)
        raise UnsupportedAction(f"Unknown action {action}")
