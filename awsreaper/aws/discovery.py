"""
Resource discovery.

A Discovery produces one lazy iterable per resource kind. AWSDiscovery walks
every configured region with boto3 paginators; a region whose API calls fail
is logged and skipped so the other regions and kinds are still reaped.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..reapable import Reapable, ResourceKind
from .autoscaling import AutoScalingGroup
from .cloudformation import Cloudformation
from .instance import Instance
from .resource import client
from .securitygroup import SecurityGroup
from .volume import Volume

logger = logging.getLogger(__name__)


class Discovery(ABC):
    """Source of resource snapshots for one reap cycle."""

    @abstractmethod
    def cloudformations(self) -> Iterable[Cloudformation]:
        ...

    @abstractmethod
    def autoscaling_groups(self) -> Iterable[AutoScalingGroup]:
        ...

    @abstractmethod
    def instances(self) -> Iterable[Instance]:
        ...

    @abstractmethod
    def security_groups(self) -> Iterable[SecurityGroup]:
        ...

    @abstractmethod
    def volumes(self) -> Iterable[Volume]:
        ...

    def for_kind(self, kind: ResourceKind) -> Callable[[], Iterable[Reapable]]:
        """The producer function for one kind."""
        if kind is ResourceKind.CLOUDFORMATION:
            return self.cloudformations
        if kind is ResourceKind.AUTOSCALING_GROUP:
            return self.autoscaling_groups
        if kind is ResourceKind.INSTANCE:
            return self.instances
        if kind is ResourceKind.SECURITY_GROUP:
            return self.security_groups
        if kind is ResourceKind.VOLUME:
            return self.volumes
        raise ValueError(f"Unknown resource kind: {kind}")


class AWSDiscovery(Discovery):
    """Discovers resources in every configured region with boto3."""

    def __init__(self, config: Any, now: Optional[datetime] = None):
        self.config = config
        self.now = now

    def _per_region(self, kind: str, fetch: Callable[[str], Iterator[Reapable]]) -> Iterator[Reapable]:
        for region in self.config.regions:
            try:
                yield from fetch(region)
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Could not list {kind} in {region}: {e}")

    def instances(self) -> Iterator[Instance]:
        def fetch(region: str) -> Iterator[Instance]:
            ec2 = client("ec2", region)
            for page in ec2.get_paginator("describe_instances").paginate():
                for reservation in page.get("Reservations", []):
                    for data in reservation.get("Instances", []):
                        yield Instance.from_api(region, data, self.config, self.now)

        return self._per_region("instances", fetch)

    def autoscaling_groups(self) -> Iterator[AutoScalingGroup]:
        def fetch(region: str) -> Iterator[AutoScalingGroup]:
            api = client("autoscaling", region)
            for page in api.get_paginator("describe_auto_scaling_groups").paginate():
                for data in page.get("AutoScalingGroups", []):
                    yield AutoScalingGroup.from_api(region, data, self.config, self.now)

        return self._per_region("autoscaling groups", fetch)

    def security_groups(self) -> Iterator[SecurityGroup]:
        def fetch(region: str) -> Iterator[SecurityGroup]:
            ec2 = client("ec2", region)
            for page in ec2.get_paginator("describe_security_groups").paginate():
                for data in page.get("SecurityGroups", []):
                    yield SecurityGroup.from_api(region, data, self.config, self.now)

        return self._per_region("security groups", fetch)

    def volumes(self) -> Iterator[Volume]:
        def fetch(region: str) -> Iterator[Volume]:
            ec2 = client("ec2", region)
            for page in ec2.get_paginator("describe_volumes").paginate():
                for data in page.get("Volumes", []):
                    yield Volume.from_api(region, data, self.config, self.now)

        return self._per_region("volumes", fetch)

    def cloudformations(self) -> Iterator[Cloudformation]:
        def fetch(region: str) -> Iterator[Cloudformation]:
            api = client("cloudformation", region)
            for page in api.get_paginator("describe_stacks").paginate():
                for data in page.get("Stacks", []):
                    resources = self._stack_resources(api, region, data["StackId"])
                    yield Cloudformation.from_api(region, data, self.config, self.now, resources=resources)

        return self._per_region("cloudformation stacks", fetch)

    @staticmethod
    def _stack_resources(api, region: str, stack_id: str) -> List[str]:
        """Physical ids of everything a stack manages."""
        resources = []
        try:
            for page in api.get_paginator("list_stack_resources").paginate(StackName=stack_id):
                for summary in page.get("StackResourceSummaries", []):
                    physical_id = summary.get("PhysicalResourceId")
                    if physical_id:
                        resources.append(physical_id)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not list resources of stack {stack_id} in {region}: {e}")
        return resources
