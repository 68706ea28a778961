"""
EC2 security groups.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..reapable import ResourceKind
from .resource import AWSResource, tags_from_api

logger = logging.getLogger(__name__)


class SecurityGroup(AWSResource):
    """A security group. Other resources refer to it by id or by name."""

    kind = ResourceKind.SECURITY_GROUP

    def __init__(self, region: str, group_id: str, group_name: str = "",
                 tags: Optional[Dict[str, str]] = None, vpc_id: str = "", description: str = ""):
        super().__init__(region, group_id, name=group_name, tags=tags)
        self.group_name = group_name
        self.vpc_id = vpc_id
        self.group_description = description

    @classmethod
    def from_api(cls, region: str, data: Dict[str, Any], config: Any = None,
                 now: Optional[datetime] = None) -> "SecurityGroup":
        group = cls(
            region,
            data["GroupId"],
            group_name=data.get("GroupName", ""),
            tags=tags_from_api(data.get("Tags")),
            vpc_id=data.get("VpcId", ""),
            description=data.get("Description", ""),
        )
        group._restore(config, now)
        return group

    def console_url(self) -> str:
        return (f"https://{self.region}.console.aws.amazon.com/ec2/v2/home"
                f"?region={self.region}#SecurityGroups:groupId={self.id}")

    def terminate(self) -> bool:
        logger.info(f"Deleting {self.description_tiny()}")
        api = self._client("ec2")
        self._call("delete", api.delete_security_group, GroupId=self.id)
        return True

    def tag_resource(self, key: str, value: str) -> bool:
        return self.tag_with("ec2", key, value)

    def untag_resource(self, key: str) -> bool:
        return self.untag_with("ec2", key)
