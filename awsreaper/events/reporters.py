"""
Event reporters.

LogReporter and WebhookReporter only tell people about resources.
TaggerReporter and ReaperReporter change resources at the provider and do
nothing but log in dry-run mode.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..reapable import Reapable
from ..state import StateEnum
from .base import EventReporter
from .render import Renderer

logger = logging.getLogger(__name__)


class LogReporter(EventReporter):
    """Writes events and statistics to the log."""

    def new_event(self, title: str, text: str, fields: Optional[Dict[str, str]] = None,
                  tags: Optional[List[str]] = None) -> None:
        logger.info(f"Event: {title}: {text} {fields or {}} {tags or []}")

    def new_statistic(self, name: str, value: float, tags: Optional[List[str]] = None) -> None:
        logger.info(f"Statistic: {name} {value:g} {tags or []}")

    def new_reapable_event(self, resource: Reapable, tags: Optional[List[str]] = None) -> None:
        logger.info(f"Reapable: {resource.description()}")

    def new_batch_reapable_event(self, resources: Sequence[Reapable], tags: Optional[List[str]] = None) -> None:
        owner = resources[0].owner if resources else None
        logger.info(f"Batch of {len(resources)} reapables for {owner}")
        for resource in resources:
            self.new_reapable_event(resource, tags)


class WebhookReporter(EventReporter):
    """
    Posts rendered events and statistics as JSON to a webhook.

    Only resources whose state changed this cycle are posted, so an owner
    hears about each stage once rather than every interval.

    Failed posts raise, so the dispatcher logs them.
    """

    def __init__(self, url: str, renderer: Renderer, timeout: float = 10.0, dry_run: bool = False):
        super().__init__(dry_run)
        self.url = url
        self.renderer = renderer
        self.timeout = timeout

    def _post(self, payload: Dict[str, Any]) -> None:
        response = requests.post(
            self.url,
            headers={"Content-Type": "application/json"},
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()

    def new_event(self, title: str, text: str, fields: Optional[Dict[str, str]] = None,
                  tags: Optional[List[str]] = None) -> None:
        self._post({"type": "event", "title": title, "text": text,
                    "fields": fields or {}, "tags": tags or []})

    def new_statistic(self, name: str, value: float, tags: Optional[List[str]] = None) -> None:
        self._post({"type": "statistic", "name": name, "value": value, "tags": tags or []})

    def new_reapable_event(self, resource: Reapable, tags: Optional[List[str]] = None) -> None:
        if not resource.reaper_state.updated:
            return
        payload = self.renderer.render(resource).as_dict()
        payload.update({
            "type": "reapable",
            "owner": resource.owner,
            "region": resource.region,
            "id": resource.id,
            "kind": resource.kind.value,
            "state": resource.reaper_state.serialize(),
            "dry_run": self.dry_run,
            "tags": tags or [],
        })
        self._post(payload)

    def new_batch_reapable_event(self, resources: Sequence[Reapable], tags: Optional[List[str]] = None) -> None:
        resources = [r for r in resources if r.reaper_state.updated]
        if not resources:
            return
        owner = resources[0].owner or ""
        payload = self.renderer.render_batch(owner, resources).as_dict()
        payload.update({
            "type": "batch",
            "owner": owner,
            "resources": [{"region": r.region, "id": r.id, "kind": r.kind.value,
                           "state": r.reaper_state.serialize()} for r in resources],
            "dry_run": self.dry_run,
            "tags": tags or [],
        })
        self._post(payload)


class TaggerReporter(EventReporter):
    """Writes changed lifecycle states back to the state tag."""

    def __init__(self, state_tag: str, dry_run: bool = False):
        super().__init__(dry_run)
        self.state_tag = state_tag

    def new_statistic(self, name: str, value: float, tags: Optional[List[str]] = None) -> None:
        pass

    def new_reapable_event(self, resource: Reapable, tags: Optional[List[str]] = None) -> None:
        if not resource.reaper_state.updated:
            return
        if self.dry_run:
            logger.info(f"Dry run: would tag {resource.description_tiny()} with "
                        f"{self.state_tag}:{resource.reaper_state}")
            return
        resource.save(self.state_tag)


class ReaperReporter(EventReporter):
    """
    Reaps resources that reached FINAL this cycle.

    mode "terminate" deletes them, mode "stop" stops them. Dependencies are
    never touched.
    """

    def __init__(self, mode: str = "terminate", dry_run: bool = False):
        super().__init__(dry_run)
        self.mode = mode

    def new_statistic(self, name: str, value: float, tags: Optional[List[str]] = None) -> None:
        pass

    def new_reapable_event(self, resource: Reapable, tags: Optional[List[str]] = None) -> None:
        state = resource.reaper_state
        if state.state is not StateEnum.FINAL or not state.updated:
            return
        if resource.dependency:
            logger.warning(f"Not reaping {resource.description_tiny()}: it is a dependency")
            return

        verb = "stop" if self.mode == "stop" else "terminate"
        if self.dry_run:
            logger.info(f"Dry run: would {verb} {resource.description_short()}")
            return

        if verb == "stop":
            resource.stop()
        else:
            resource.terminate()
        logger.info(f"Reaped ({verb}) {resource.description_short()}")
