"""
AWS resource kinds and discovery.
"""

from .autoscaling import AutoScalingGroup
from .cloudformation import Cloudformation
from .discovery import AWSDiscovery, Discovery
from .instance import Instance
from .securitygroup import SecurityGroup
from .volume import Volume

__all__ = [
    "AutoScalingGroup",
    "Cloudformation",
    "Instance",
    "SecurityGroup",
    "Volume",
    "Discovery",
    "AWSDiscovery",
]
