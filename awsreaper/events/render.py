"""
Notification rendering.

Turns a reapable resource, or an owner's batch of them, into a subject, a
plain-text body and an HTML body with signed action links.
"""

import html
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Sequence

from .. import token
from ..reapable import Reapable, ResourceKind
from ..state import StateEnum

logger = logging.getLogger(__name__)

IGNORE_DURATIONS = (timedelta(days=1), timedelta(days=3), timedelta(days=7))

_STOPPABLE = (ResourceKind.INSTANCE, ResourceKind.AUTOSCALING_GROUP)

_HEADLINES = {
    StateEnum.FIRST: "is going to be reaped",
    StateEnum.SECOND: "is still going to be reaped (second notice)",
    StateEnum.THIRD: "is going to be reaped soon (final notice)",
    StateEnum.FINAL: "is being reaped",
    StateEnum.IGNORE: "is being ignored",
}


@dataclass
class RenderedEvent:
    subject: str
    text: str
    html: str
    links: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"subject": self.subject, "text": self.text, "html": self.html, "links": self.links}


class Renderer:
    """Renders events using the HTTP settings for links."""

    def __init__(self, config: Any):
        self.config = config

    def links(self, resource: Reapable) -> Dict[str, str]:
        """
        Signed action links for one resource, keyed by action name.

        Without a token secret no links can be signed and none are returned.
        """
        http = self.config.http
        if not http.token_secret:
            logger.debug(f"No token secret, rendering {resource.description_tiny()} without links")
            return {}

        kw = {"action_param": http.action_param, "token_param": http.token_param}
        args = (resource.region, resource.id, http.token_secret, http.api_url)

        links = {"terminate": token.terminate_link(*args, **kw)}
        if resource.kind in _STOPPABLE:
            links["stop"] = token.stop_link(*args, **kw)
        links["whitelist"] = token.whitelist_link(*args, **kw)
        for duration in IGNORE_DURATIONS:
            days = duration.days
            links[f"ignore_{days}d"] = token.ignore_link(*args, duration=duration, **kw)
        return links

    def subject(self, resource: Reapable) -> str:
        headline = _HEADLINES.get(resource.reaper_state.state, "")
        if resource.reaper_state.state is StateEnum.FINAL and self.config.mode == "stop":
            headline = "is being stopped"
        return f"AWS {resource.description_short()} {headline}"

    def _text_body(self, resource: Reapable, links: Dict[str, str]) -> str:
        lines = [
            f"{resource.description()}.",
            f"Console: {resource.console_url()}",
        ]
        if resource.matched_filter_groups:
            lines.append(f"Matched filter groups: {', '.join(sorted(resource.matched_filter_groups))}")
        if links:
            lines.append("")
            for name, url in links.items():
                lines.append(f"{_link_label(name)}: {url}")
        return "\n".join(lines)

    def _html_body(self, resource: Reapable, links: Dict[str, str]) -> str:
        parts = [
            f"<p>{html.escape(resource.description())}.</p>",
            f"<p><a href=\"{html.escape(resource.console_url())}\">Open in the AWS console</a></p>",
        ]
        if links:
            parts.append("<ul>")
            for name, url in links.items():
                parts.append(f"<li><a href=\"{html.escape(url)}\">{html.escape(_link_label(name))}</a></li>")
            parts.append("</ul>")
        return "\n".join(parts)

    def render(self, resource: Reapable) -> RenderedEvent:
        links = self.links(resource)
        return RenderedEvent(
            subject=self.subject(resource),
            text=self._text_body(resource, links),
            html=self._html_body(resource, links),
            links=links,
        )

    def render_batch(self, owner: str, resources: Sequence[Reapable]) -> RenderedEvent:
        """One notification listing every resource of an owner."""
        rendered: List[RenderedEvent] = [self.render(r) for r in resources]
        subject = f"AWS resources owned by {owner} are going to be reaped ({len(resources)})"
        text = "\n\n".join(f"{r.subject}\n{r.text}" for r in rendered)
        body = "\n<hr/>\n".join(f"<h3>{html.escape(r.subject)}</h3>\n{r.html}" for r in rendered)
        links = {}
        for resource, r in zip(resources, rendered):
            for name, url in r.links.items():
                links[f"{resource.region}/{resource.id}/{name}"] = url
        return RenderedEvent(subject=subject, text=text, html=body, links=links)


def _link_label(name: str) -> str:
    if name.startswith("ignore_"):
        return f"Ignore for {name[len('ignore_'):]}"
    return name.capitalize()
