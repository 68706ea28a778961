"""
EC2 instances.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..reapable import ResourceKind
from ..tags import parse_schedule_tag
from .resource import AWSResource, option, tags_from_api

logger = logging.getLogger(__name__)


class Instance(AWSResource):
    """An EC2 instance."""

    kind = ResourceKind.INSTANCE

    def __init__(self, region: str, instance_id: str, name: Optional[str] = None,
                 tags: Optional[Dict[str, str]] = None, launch_time: Optional[datetime] = None,
                 instance_type: str = "", instance_state: str = "running",
                 security_groups: Optional[Dict[str, str]] = None, public_ip: Optional[str] = None):
        super().__init__(region, instance_id, name=name, tags=tags, created_time=launch_time)
        self.instance_type = instance_type
        self.instance_state = instance_state
        # group id -> group name
        self.security_groups: Dict[str, str] = dict(security_groups or {})
        self.public_ip = public_ip
        self.autoscaled = False
        self.scheduling = None

    @classmethod
    def from_api(cls, region: str, data: Dict[str, Any], config: Any = None,
                 now: Optional[datetime] = None) -> "Instance":
        """
        Build an Instance from a describe_instances entry.

        Args:
            region: AWS region
            data: One element of Reservations[].Instances[]
            config: Reaper configuration (state/schedule tags, durations)
            now: Time used for a fresh lifecycle state
        """
        tags = tags_from_api(data.get("Tags"))
        instance = cls(
            region,
            data["InstanceId"],
            name=tags.get("Name"),
            tags=tags,
            launch_time=data.get("LaunchTime"),
            instance_type=data.get("InstanceType", ""),
            instance_state=(data.get("State") or {}).get("Name", ""),
            security_groups={g["GroupId"]: g.get("GroupName", "") for g in data.get("SecurityGroups", [])},
            public_ip=data.get("PublicIpAddress"),
        )
        instance._restore(config, now)
        instance.scheduling = parse_schedule_tag(instance.tag(option(config, "schedule_tag", "REAPER_SCHEDULE")))
        return instance

    @property
    def launch_time(self) -> Optional[datetime]:
        return self.created_time

    def terminated(self) -> bool:
        return self.instance_state in ("terminated", "shutting-down")

    def stopped(self) -> bool:
        return self.instance_state in ("stopped", "stopping")

    def console_url(self) -> str:
        return (f"https://{self.region}.console.aws.amazon.com/ec2/v2/home"
                f"?region={self.region}#Instances:instanceId={self.id}")

    def filter_functions(self):
        functions = super().filter_functions()
        functions.update({
            "InstanceType": lambda f: self.instance_type == f.arguments[0],
            "NotInstanceType": lambda f: self.instance_type != f.arguments[0],
            "State": lambda f: self.instance_state == f.arguments[0],
            "NotState": lambda f: self.instance_state != f.arguments[0],
            "HasPublicIPAddress": lambda f: bool(self.public_ip),
            "AutoScaled": lambda f: self.autoscaled == f.bool_value(0),
            "LaunchTimeBefore": lambda f: self.launch_time is not None and self.launch_time < f.time_value(0),
            "LaunchTimeAfter": lambda f: self.launch_time is not None and self.launch_time > f.time_value(0),
            "LaunchTimeInTheLast": lambda f: self._age_below(self.launch_time, f.duration_value(0)),
            "LaunchTimeNotInTheLast": lambda f: self._age_above(self.launch_time, f.duration_value(0)),
        })
        return functions

    def terminate(self) -> bool:
        logger.info(f"Terminating {self.description_tiny()}")
        api = self._client("ec2")
        self._call("terminate", api.terminate_instances, InstanceIds=[self.id])
        return True

    def stop(self) -> bool:
        logger.info(f"Stopping {self.description_tiny()}")
        api = self._client("ec2")
        self._call("stop", api.stop_instances, InstanceIds=[self.id])
        return True

    def force_stop(self) -> bool:
        logger.info(f"Force-stopping {self.description_tiny()}")
        api = self._client("ec2")
        self._call("force-stop", api.stop_instances, InstanceIds=[self.id], Force=True)
        return True

    def start(self) -> bool:
        logger.info(f"Starting {self.description_tiny()}")
        api = self._client("ec2")
        self._call("start", api.start_instances, InstanceIds=[self.id])
        return True

    def scale_down(self) -> bool:
        return self.stop()

    def scale_up(self) -> bool:
        return self.start()

    def tag_resource(self, key: str, value: str) -> bool:
        return self.tag_with("ec2", key, value)

    def untag_resource(self, key: str) -> bool:
        return self.untag_with("ec2", key)
