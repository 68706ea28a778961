"""
Shared fixtures: a config with every kind enabled and a recording dispatcher.
"""

import pytest

from awsreaper.config import Config
from awsreaper.events import EventDispatcher

from helpers import RecordingReporter


@pytest.fixture
def config():
    return Config.model_validate({
        "regions": ["us-east-1"],
        "dry_run": True,
        "http": {"token_secret": "s3cret", "api_url": "http://testserver"},
        "instances": {"enabled": True},
        "autoscaling_groups": {"enabled": True},
        "security_groups": {"enabled": True},
        "volumes": {"enabled": True},
        "cloudformations": {"enabled": True},
    })


@pytest.fixture
def recorder():
    return RecordingReporter()


@pytest.fixture
def dispatcher(recorder):
    return EventDispatcher([recorder])
