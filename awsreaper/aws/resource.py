"""
Base class for boto3-backed resources.
"""

import logging
import operator
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ProviderError
from ..reapable import Reapable

logger = logging.getLogger(__name__)


def tags_from_api(tag_list: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """Convert the API's [{'Key': k, 'Value': v}] list into a dict."""
    return {tag["Key"]: tag.get("Value", "") for tag in (tag_list or []) if "Key" in tag}


def client(service: str, region: str):
    return boto3.client(service, region_name=region)


class AWSResource(Reapable):
    """A Reapable whose mutations go through boto3."""

    def _client(self, service: str):
        return client(service, self.region)

    def _restore(self, config: Any, now: Optional[datetime]) -> None:
        """Restore lifecycle state from the state tag once tags are known."""
        durations = config.durations() if config is not None else None
        self.restore_state(option(config, "state_tag", "REAPER"), now, durations)

    def tag_with(self, service: str, key: str, value: str) -> bool:
        """Tag an EC2-style resource (instances, security groups, volumes)."""
        logger.info(f"Tagging {self.description_tiny()} in {self.region} with {key}:{value}")
        api = self._client(service)
        self._call("tag", api.create_tags, Resources=[self.id], Tags=[{"Key": key, "Value": value}])
        self.tags[key] = value
        return True

    def untag_with(self, service: str, key: str) -> bool:
        api = self._client(service)
        self._call("untag", api.delete_tags, Resources=[self.id], Tags=[{"Key": key}])
        self.tags.pop(key, None)
        return True

    def _call(self, action: str, fn: Callable[..., Any], **kwargs) -> Any:
        """
        Run one provider call, turning provider failures into ProviderError.

        Args:
            action: What is being done, for the log
            fn: Bound boto3 client method
            **kwargs: API parameters

        Returns:
            The API response
        """
        try:
            return fn(**kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Could not {action} {self.description_tiny()} in {self.region}: {e}")
            raise ProviderError(str(e)) from e


def size_filter_functions(size: Optional[int]) -> Dict[str, Callable]:
    """Numeric comparisons of a kind's size or capacity field against the first argument."""

    def compare(op):
        return lambda f: size is not None and op(size, f.int_value(0))

    return {
        "SizeGreaterThan": compare(operator.gt),
        "SizeLessThan": compare(operator.lt),
        "SizeEqualTo": compare(operator.eq),
        "SizeGreaterThanOrEqualTo": compare(operator.ge),
        "SizeLessThanOrEqualTo": compare(operator.le),
    }


def option(config: Any, name: str, default: Any) -> Any:
    """Read a setting from an optional config object."""
    if config is None:
        return default
    return getattr(config, name, default)
