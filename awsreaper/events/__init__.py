"""
Notification collaborators: reporters, dispatcher and rendering.
"""

from .base import EventDispatcher, EventReporter
from .render import RenderedEvent, Renderer
from .reporters import LogReporter, ReaperReporter, TaggerReporter, WebhookReporter

__all__ = [
    "build_dispatcher",
    "EventDispatcher",
    "EventReporter",
    "LogReporter",
    "ReaperReporter",
    "RenderedEvent",
    "Renderer",
    "TaggerReporter",
    "WebhookReporter",
]


def build_dispatcher(config) -> EventDispatcher:
    """The reporters a configuration asks for."""
    dispatcher = EventDispatcher([LogReporter(dry_run=config.dry_run)])
    notifications = config.notifications
    if notifications.webhook_url:
        dispatcher.add(WebhookReporter(notifications.webhook_url, Renderer(config),
                                       timeout=notifications.webhook_timeout, dry_run=config.dry_run))
    if notifications.tagger:
        dispatcher.add(TaggerReporter(config.state_tag, dry_run=config.dry_run))
    if notifications.reaper:
        dispatcher.add(ReaperReporter(config.mode, dry_run=config.dry_run))
    return dispatcher
