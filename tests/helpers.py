"""
Test doubles shared by the test modules.
"""

from awsreaper.aws.discovery import Discovery
from awsreaper.events.base import EventReporter


class StaticDiscovery(Discovery):
    """Discovery over fixed lists of resources."""

    def __init__(self, cloudformations=(), autoscaling_groups=(), instances=(),
                 security_groups=(), volumes=()):
        self._cloudformations = list(cloudformations)
        self._autoscaling_groups = list(autoscaling_groups)
        self._instances = list(instances)
        self._security_groups = list(security_groups)
        self._volumes = list(volumes)

    def cloudformations(self):
        return list(self._cloudformations)

    def autoscaling_groups(self):
        return list(self._autoscaling_groups)

    def instances(self):
        return list(self._instances)

    def security_groups(self):
        return list(self._security_groups)

    def volumes(self):
        return list(self._volumes)


class RecordingReporter(EventReporter):
    """Keeps everything it is sent."""

    def __init__(self):
        super().__init__()
        self.statistics = []
        self.events = []
        self.batches = []

    def new_statistic(self, name, value, tags=None):
        self.statistics.append((name, value, list(tags or [])))

    def new_reapable_event(self, resource, tags=None):
        self.events.append(resource)

    def new_batch_reapable_event(self, resources, tags=None):
        self.batches.append(list(resources))

    def statistic(self, name):
        return [s for s in self.statistics if s[0] == name]
