"""
Autoscaling groups.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..reapable import ResourceKind
from ..tags import parse_schedule_tag
from .resource import AWSResource, option, size_filter_functions, tags_from_api

logger = logging.getLogger(__name__)

# remembers "desired:min" while a group is scaled down by its schedule
SCALED_DOWN_TAG = "REAPER_SCALED_DOWN_SIZE"


class AutoScalingGroup(AWSResource):
    """An autoscaling group. Its id and name are both the group name."""

    kind = ResourceKind.AUTOSCALING_GROUP

    def __init__(self, region: str, name: str, tags: Optional[Dict[str, str]] = None,
                 created_time: Optional[datetime] = None, desired_capacity: Optional[int] = None,
                 min_size: int = 0, max_size: int = 0, instances: Optional[List[str]] = None):
        super().__init__(region, name, name=name, tags=tags, created_time=created_time)
        self.desired_capacity = desired_capacity
        self.min_size = min_size
        self.max_size = max_size
        self.instances: List[str] = list(instances or [])
        self.scheduling = None

    @classmethod
    def from_api(cls, region: str, data: Dict[str, Any], config: Any = None,
                 now: Optional[datetime] = None) -> "AutoScalingGroup":
        """Build a group from a describe_auto_scaling_groups entry."""
        group = cls(
            region,
            data["AutoScalingGroupName"],
            tags=tags_from_api(data.get("Tags")),
            created_time=data.get("CreatedTime"),
            desired_capacity=data.get("DesiredCapacity"),
            min_size=data.get("MinSize", 0),
            max_size=data.get("MaxSize", 0),
            instances=[i["InstanceId"] for i in data.get("Instances", []) if "InstanceId" in i],
        )
        group._restore(config, now)
        group.scheduling = parse_schedule_tag(group.tag(option(config, "schedule_tag", "REAPER_SCHEDULE")))
        return group

    def console_url(self) -> str:
        return (f"https://{self.region}.console.aws.amazon.com/ec2/autoscaling/home"
                f"?region={self.region}#AutoScalingGroups:id={quote(self.id, safe='')};view=details")

    def filter_functions(self):
        functions = super().filter_functions()
        functions.update(size_filter_functions(self.desired_capacity))
        return functions

    def scale_to_size(self, size: int, min_size: int) -> bool:
        logger.info(f"Scaling {self.description_tiny()} to size {size}.")
        api = self._client("autoscaling")
        self._call("scale", api.update_auto_scaling_group,
                   AutoScalingGroupName=self.id, DesiredCapacity=size, MinSize=min_size)
        self.desired_capacity = size
        self.min_size = min_size
        return True

    def terminate(self) -> bool:
        logger.info(f"Terminating {self.description_tiny()}")
        api = self._client("autoscaling")
        self._call("delete", api.delete_auto_scaling_group, AutoScalingGroupName=self.id)
        return True

    def stop(self) -> bool:
        """Stopping a group scales it to zero."""
        return self.scale_to_size(0, 0)

    def scale_down(self) -> bool:
        if self.desired_capacity:
            self.tag_resource(SCALED_DOWN_TAG, f"{self.desired_capacity}:{self.min_size}")
        return self.scale_to_size(0, 0)

    def scale_up(self) -> bool:
        size, min_size = 1, 1
        saved = self.tag(SCALED_DOWN_TAG)
        if saved:
            try:
                size, min_size = (int(part) for part in saved.split(":", 1))
            except ValueError:
                logger.warning(f"Bad {SCALED_DOWN_TAG} tag on {self.description_tiny()}: {saved!r}")
        return self.scale_to_size(size, min_size)

    def tag_resource(self, key: str, value: str) -> bool:
        logger.info(f"Tagging {self.description_tiny()} in {self.region} with {key}:{value}")
        api = self._client("autoscaling")
        self._call("tag", api.create_or_update_tags, Tags=[{
            "ResourceId": self.id,
            "ResourceType": "auto-scaling-group",
            "PropagateAtLaunch": False,
            "Key": key,
            "Value": value,
        }])
        self.tags[key] = value
        return True

    def untag_resource(self, key: str) -> bool:
        api = self._client("autoscaling")
        self._call("untag", api.delete_tags, Tags=[{
            "ResourceId": self.id,
            "ResourceType": "auto-scaling-group",
            "Key": key,
        }])
        self.tags.pop(key, None)
        return True
