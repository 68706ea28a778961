"""
EBS volumes.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..reapable import ResourceKind
from .resource import AWSResource, size_filter_functions, tags_from_api

logger = logging.getLogger(__name__)

_LIVE_ATTACHMENT_STATES = ("attaching", "attached")


class Volume(AWSResource):
    """An EBS volume. Size is in GiB."""

    kind = ResourceKind.VOLUME

    def __init__(self, region: str, volume_id: str, name: Optional[str] = None,
                 tags: Optional[Dict[str, str]] = None, created_time: Optional[datetime] = None,
                 size: Optional[int] = None, volume_state: str = "", volume_type: str = "",
                 attached_instance_ids: Optional[List[str]] = None):
        super().__init__(region, volume_id, name=name, tags=tags, created_time=created_time)
        self.size = size
        self.volume_state = volume_state
        self.volume_type = volume_type
        self.attached_instance_ids: List[str] = list(attached_instance_ids or [])

    @classmethod
    def from_api(cls, region: str, data: Dict[str, Any], config: Any = None,
                 now: Optional[datetime] = None) -> "Volume":
        tags = tags_from_api(data.get("Tags"))
        volume = cls(
            region,
            data["VolumeId"],
            name=tags.get("Name"),
            tags=tags,
            created_time=data.get("CreateTime"),
            size=data.get("Size"),
            volume_state=data.get("State", ""),
            volume_type=data.get("VolumeType", ""),
            attached_instance_ids=[
                a["InstanceId"] for a in data.get("Attachments", [])
                if a.get("State") in _LIVE_ATTACHMENT_STATES and "InstanceId" in a
            ],
        )
        volume._restore(config, now)
        return volume

    def console_url(self) -> str:
        return (f"https://{self.region}.console.aws.amazon.com/ec2/v2/home"
                f"?region={self.region}#Volumes:volumeId={self.id}")

    def filter_functions(self):
        functions = super().filter_functions()
        functions.update(size_filter_functions(self.size))
        functions.update({
            "State": lambda f: self.volume_state == f.arguments[0],
            "NotState": lambda f: self.volume_state != f.arguments[0],
            "Attached": lambda f: bool(self.attached_instance_ids) == f.bool_value(0),
        })
        return functions

    def terminate(self) -> bool:
        logger.info(f"Deleting {self.description_tiny()}")
        api = self._client("ec2")
        self._call("delete", api.delete_volume, VolumeId=self.id)
        return True

    def tag_resource(self, key: str, value: str) -> bool:
        return self.tag_with("ec2", key, value)

    def untag_resource(self, key: str) -> bool:
        return self.untag_with("ec2", key)
