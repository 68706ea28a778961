"""
Tests for the filter engine and filter functions.
"""

from datetime import datetime, timedelta, timezone

import pytest

from awsreaper.aws import AutoScalingGroup, Cloudformation, Instance, Volume
from awsreaper.config import Config
from awsreaper.filters import Filter, apply_filters, is_whitelisted, match_config, match_group
from awsreaper.reapable import ResourceKind


def _instance(resource_id="i-1", **kw):
    kw.setdefault("instance_type", "t2.micro")
    kw.setdefault("instance_state", "running")
    return Instance("us-east-1", resource_id, **kw)


def _config(instance_groups):
    return Config.model_validate({
        "instances": {"enabled": True, "filter_groups": instance_groups},
    })


class TestMatching:
    """Test group and config matching."""

    def test_no_groups_match_everything(self):
        """Test matching is vacuous without groups."""
        assert match_config(_instance(), {}) == (True, [])
        assert match_config(_instance(), {"empty": {}}) == (True, [])

    def test_group_is_and(self):
        group = {
            "type": Filter("InstanceType", ["t2.micro"]),
            "state": Filter("State", ["running"]),
        }
        assert match_group(_instance(), group)
        assert not match_group(_instance(instance_state="stopped"), group)

    def test_groups_are_or(self):
        """Test any matching group is enough and all matching names are reported."""
        groups = {
            "small": {"type": Filter("InstanceType", ["t2.micro"])},
            "large": {"type": Filter("InstanceType", ["m5.xlarge"])},
            "running": {"state": Filter("State", ["running"])},
        }
        matched, names = match_config(_instance(), groups)

        assert matched
        assert sorted(names) == ["running", "small"]

    def test_bad_argument_is_false(self):
        """Test an unparseable argument makes the filter false, not an error."""
        assert not match_group(_instance(), {"auto": Filter("AutoScaled", ["perhaps"])})
        assert not match_group(_instance(), {"age": Filter("LaunchTimeInTheLast", ["soon"])})

    def test_unknown_function_is_false(self):
        assert not match_group(_instance(), {"x": Filter("Sparkles", [])})

    def test_is_whitelisted(self):
        assert is_whitelisted(_instance(tags={"REAPER_SPARE_ME": ""}), "REAPER_SPARE_ME")
        assert not is_whitelisted(_instance(), "REAPER_SPARE_ME")


class TestFilterValues:
    """Test argument parsing helpers."""

    def test_bool_value(self):
        assert Filter("X", ["T"]).bool_value(0)
        assert not Filter("X", ["0"]).bool_value(0)
        with pytest.raises(ValueError):
            Filter("X", ["yes"]).bool_value(0)

    def test_time_value(self):
        moment = Filter("X", ["2024-01-01T00:00:00Z"]).time_value(0)
        assert moment == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_duration_value(self):
        assert Filter("X", ["1h30m"]).duration_value(0) == timedelta(minutes=90)


class TestFilterFunctions:
    """Test kind-specific filter functions."""

    def test_shared_functions(self):
        instance = _instance(name="web-1", tags={"Name": "web-1", "env": "dev"})

        assert instance.filter(Filter("Region", ["us-east-1", "us-west-2"]))
        assert instance.filter(Filter("NotRegion", ["eu-west-1"]))
        assert instance.filter(Filter("Tagged", ["env"]))
        assert instance.filter(Filter("TagNotEqual", ["env", "prod"]))
        assert instance.filter(Filter("NameContains", ["web"]))
        assert instance.filter(Filter("ReaperState", ["FIRST"]))
        assert instance.filter(Filter("IsDependency", ["false"]))
        assert not instance.filter(Filter("InCloudformation", ["true"]))

    def test_launch_time(self):
        launched = datetime.now(timezone.utc) - timedelta(days=10)
        instance = _instance(launch_time=launched)

        assert instance.filter(Filter("LaunchTimeBefore", ["2999-01-01T00:00:00Z"]))
        assert not instance.filter(Filter("LaunchTimeAfter", ["2999-01-01T00:00:00Z"]))
        assert instance.filter(Filter("LaunchTimeNotInTheLast", ["72h"]))
        assert not instance.filter(Filter("LaunchTimeInTheLast", ["72h"]))
        assert instance.filter(Filter("CreatedTimeNotInTheLast", ["3d"]))

    def test_public_ip_and_autoscaled(self):
        instance = _instance(public_ip="1.2.3.4")

        assert instance.filter(Filter("HasPublicIPAddress", []))
        assert instance.filter(Filter("AutoScaled", ["false"]))

    def test_size_functions(self):
        volume = Volume("us-east-1", "vol-1", size=100, volume_state="available")
        group = AutoScalingGroup("us-east-1", "asg-1", desired_capacity=0)

        assert volume.filter(Filter("SizeGreaterThan", ["50"]))
        assert volume.filter(Filter("SizeLessThanOrEqualTo", ["100"]))
        assert not volume.filter(Filter("SizeEqualTo", ["99"]))
        assert volume.filter(Filter("State", ["available"]))
        assert volume.filter(Filter("Attached", ["false"]))
        assert group.filter(Filter("SizeEqualTo", ["0"]))
        assert not group.filter(Filter("SizeGreaterThanOrEqualTo", ["1"]))

    def test_cloudformation_status(self):
        stack = Cloudformation("us-east-1", "arn:stack/1", stack_name="s", stack_status="CREATE_COMPLETE")

        assert stack.filter(Filter("Status", ["CREATE_COMPLETE"]))
        assert stack.filter(Filter("NotStatus", ["ROLLBACK_COMPLETE"]))


class TestApplyFilters:
    """Test batch filtering."""

    def test_records_matched_groups(self):
        config = _config({"small": {"type": {"function": "InstanceType", "arguments": ["t2.micro"]}}})
        instance = _instance()

        outcome = apply_filters([instance], config)

        assert outcome.matched == [instance]
        assert list(instance.matched_filter_groups) == ["small"]

    def test_whitelisted_resources_never_survive(self):
        """Test the whitelist tag beats matching filters."""
        config = _config({})
        spared = _instance("i-spared", tags={"REAPER_SPARE_ME": "true"})
        other = _instance("i-other", instance_type="m5.large", tags={"REAPER_SPARE_ME": "yes"})
        plain = _instance("i-plain")

        outcome = apply_filters([spared, other, plain], config)

        assert outcome.matched == [plain]
        assert outcome.whitelisted[("us-east-1", ResourceKind.INSTANCE)] == 2

    def test_dependencies_never_survive(self):
        instance = _instance()
        instance.mark_dependency()

        outcome = apply_filters([instance], _config({}))

        assert outcome.matched == []
        assert outcome.dependencies[("us-east-1", ResourceKind.INSTANCE)] == 1

    def test_fault_isolated_to_one_resource(self):
        """Test a filter that blows up only affects the resource it ran on."""
        config = _config({"broken": {"tagged": {"function": "Tagged", "arguments": []}}})
        first, second = _instance("i-1"), _instance("i-2")

        outcome = apply_filters([first, second], config)

        assert outcome.matched == []
        assert outcome.failed == [first, second]

    def test_non_matching(self):
        config = _config({"large": {"type": {"function": "InstanceType", "arguments": ["m5.large"]}}})
        outcome = apply_filters([_instance()], config)

        assert outcome.matched == []
        assert outcome.failed == []
