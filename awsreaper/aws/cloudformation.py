"""
CloudFormation stacks.

Stacks are reapable themselves, and every physical resource they manage is a
dependency that must never be reaped on its own.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..reapable import ResourceKind
from .resource import AWSResource, tags_from_api

logger = logging.getLogger(__name__)


class Cloudformation(AWSResource):
    """A CloudFormation stack, identified by stack id."""

    kind = ResourceKind.CLOUDFORMATION

    def __init__(self, region: str, stack_id: str, stack_name: str = "",
                 tags: Optional[Dict[str, str]] = None, created_time: Optional[datetime] = None,
                 stack_status: str = "", resources: Optional[List[str]] = None,
                 capabilities: Optional[List[str]] = None, parameter_keys: Optional[List[str]] = None):
        super().__init__(region, stack_id, name=stack_name, tags=tags, created_time=created_time)
        self.stack_status = stack_status
        # physical ids of the resources the stack manages
        self.resources: List[str] = list(resources or [])
        self.capabilities: List[str] = list(capabilities or [])
        self.parameter_keys: List[str] = list(parameter_keys or [])

    @classmethod
    def from_api(cls, region: str, data: Dict[str, Any], config: Any = None,
                 now: Optional[datetime] = None, resources: Optional[List[str]] = None) -> "Cloudformation":
        """
        Build a stack from a describe_stacks entry.

        Args:
            region: AWS region
            data: One element of Stacks[]
            config: Reaper configuration
            now: Time used for a fresh lifecycle state
            resources: Physical resource ids from list_stack_resources
        """
        stack = cls(
            region,
            data["StackId"],
            stack_name=data.get("StackName", ""),
            tags=tags_from_api(data.get("Tags")),
            created_time=data.get("CreationTime"),
            stack_status=data.get("StackStatus", ""),
            resources=resources,
            capabilities=data.get("Capabilities", []),
            parameter_keys=[p["ParameterKey"] for p in data.get("Parameters", []) if "ParameterKey" in p],
        )
        stack._restore(config, now)
        return stack

    def console_url(self) -> str:
        return (f"https://{self.region}.console.aws.amazon.com/cloudformation/home"
                f"?region={self.region}#/stacks/stackinfo?stackId={quote(self.id, safe='')}")

    def filter_functions(self):
        functions = super().filter_functions()
        functions.update({
            "Status": lambda f: self.stack_status == f.arguments[0],
            "NotStatus": lambda f: self.stack_status != f.arguments[0],
        })
        return functions

    def terminate(self) -> bool:
        logger.info(f"Deleting {self.description_tiny()}")
        api = self._client("cloudformation")
        self._call("delete", api.delete_stack, StackName=self.id)
        return True

    def _update_tags(self, tags: Dict[str, str]) -> bool:
        """Stack tags can only change through a stack update with the previous template."""
        api = self._client("cloudformation")
        self._call(
            "update tags of",
            api.update_stack,
            StackName=self.id,
            UsePreviousTemplate=True,
            Capabilities=self.capabilities,
            Parameters=[{"ParameterKey": key, "UsePreviousValue": True} for key in self.parameter_keys],
            Tags=[{"Key": k, "Value": v} for k, v in tags.items()],
        )
        self.tags = dict(tags)
        return True

    def tag_resource(self, key: str, value: str) -> bool:
        logger.info(f"Tagging {self.description_tiny()} in {self.region} with {key}:{value}")
        tags = dict(self.tags)
        tags[key] = value
        return self._update_tags(tags)

    def untag_resource(self, key: str) -> bool:
        tags = {k: v for k, v in self.tags.items() if k != key}
        return self._update_tags(tags)

    def save(self, state_tag: str) -> bool:
        # a stack update per cycle is too disruptive; stacks persist through the state file only
        logger.debug(f"Not tagging state onto {self.description_tiny()}")
        return False

    def unsave(self, state_tag: str) -> bool:
        return False
