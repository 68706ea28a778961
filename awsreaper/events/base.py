"""
Event reporter interface and fan-out dispatcher.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from ..errors import ReaperError
from ..reapable import Reapable

logger = logging.getLogger(__name__)


class EventReporter(ABC):
    """
    Receives reap events and statistics.

    Reporters that change resources at the provider must check dry_run and
    only log what they would have done.
    """

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    @property
    def name(self) -> str:
        return type(self).__name__

    def new_event(self, title: str, text: str, fields: Optional[Dict[str, str]] = None,
                  tags: Optional[List[str]] = None) -> None:
        """A free-form event. Most reporters have nothing to do with it."""

    @abstractmethod
    def new_statistic(self, name: str, value: float, tags: Optional[List[str]] = None) -> None:
        ...

    def new_count_statistic(self, name: str, tags: Optional[List[str]] = None) -> None:
        self.new_statistic(name, 1.0, tags)

    @abstractmethod
    def new_reapable_event(self, resource: Reapable, tags: Optional[List[str]] = None) -> None:
        ...

    def new_batch_reapable_event(self, resources: Sequence[Reapable], tags: Optional[List[str]] = None) -> None:
        for resource in resources:
            try:
                self.new_reapable_event(resource, tags)
            except ReaperError as e:
                logger.error(f"{self.name} could not handle {resource.description_tiny()}: {e}")


class EventDispatcher:
    """
    Fans every call out to all reporters.

    A reporter that raises is logged and skipped so the others still see the
    event.
    """

    def __init__(self, reporters: Optional[Sequence[EventReporter]] = None):
        self.reporters: List[EventReporter] = list(reporters or [])

    def add(self, reporter: EventReporter) -> None:
        self.reporters.append(reporter)

    def _each(self, method: str, *args) -> int:
        failures = 0
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(*args)
            except Exception as e:
                failures += 1
                logger.error(f"{reporter.name}.{method} failed: {e}")
        return failures

    def new_event(self, title: str, text: str, fields: Optional[Dict[str, str]] = None,
                  tags: Optional[List[str]] = None) -> int:
        return self._each("new_event", title, text, fields, tags)

    def new_statistic(self, name: str, value: float, tags: Optional[List[str]] = None) -> int:
        return self._each("new_statistic", name, value, tags)

    def new_count_statistic(self, name: str, tags: Optional[List[str]] = None) -> int:
        return self._each("new_count_statistic", name, tags)

    def new_reapable_event(self, resource: Reapable, tags: Optional[List[str]] = None) -> int:
        return self._each("new_reapable_event", resource, tags)

    def new_batch_reapable_event(self, resources: Sequence[Reapable], tags: Optional[List[str]] = None) -> int:
        return self._each("new_batch_reapable_event", list(resources), tags)
