"""
Tests for the boto3-backed resource kinds and discovery.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from awsreaper.aws import AWSDiscovery, AutoScalingGroup, Cloudformation, Instance, SecurityGroup, Volume
from awsreaper.aws.autoscaling import SCALED_DOWN_TAG
from awsreaper.errors import ProviderError, UnsupportedAction
from awsreaper.state import StateEnum

LAUNCHED = datetime(2024, 1, 1, tzinfo=timezone.utc)

INSTANCE_DATA = {
    "InstanceId": "i-123",
    "InstanceType": "t2.micro",
    "LaunchTime": LAUNCHED,
    "State": {"Name": "running"},
    "PublicIpAddress": "1.2.3.4",
    "SecurityGroups": [{"GroupId": "sg-1", "GroupName": "web"}],
    "Tags": [
        {"Key": "Name", "Value": "web-1"},
        {"Key": "Owner", "Value": "alice@example.com"},
        {"Key": "REAPER", "Value": "SECOND|1700000000|1700003600"},
        {"Key": "REAPER_SCHEDULE", "Value": "0 18 * * 1-5|0 8 * * 1-5"},
    ],
}


def _client_error(message="boom"):
    return ClientError({"Error": {"Code": "UnauthorizedOperation", "Message": message}}, "Operation")


@pytest.fixture
def boto():
    with patch("awsreaper.aws.resource.boto3") as boto3:
        yield boto3


class TestInstance:
    """Test EC2 instances."""

    def test_from_api(self, config):
        instance = Instance.from_api("us-east-1", INSTANCE_DATA, config)

        assert instance.id == "i-123"
        assert instance.name == "web-1"
        assert instance.instance_type == "t2.micro"
        assert instance.instance_state == "running"
        assert instance.security_groups == {"sg-1": "web"}
        assert instance.public_ip == "1.2.3.4"
        assert instance.launch_time == LAUNCHED
        assert instance.reaper_state.state is StateEnum.SECOND
        assert instance.scheduling == ("0 18 * * 1-5", "0 8 * * 1-5")

    def test_terminate(self, boto):
        ec2 = boto.client.return_value
        Instance("us-east-1", "i-123").terminate()

        boto.client.assert_called_with("ec2", region_name="us-east-1")
        ec2.terminate_instances.assert_called_once_with(InstanceIds=["i-123"])

    def test_force_stop(self, boto):
        ec2 = boto.client.return_value
        Instance("us-east-1", "i-123").force_stop()

        ec2.stop_instances.assert_called_once_with(InstanceIds=["i-123"], Force=True)

    def test_provider_error(self, boto):
        boto.client.return_value.stop_instances.side_effect = _client_error("not allowed")

        with pytest.raises(ProviderError, match="not allowed"):
            Instance("us-east-1", "i-123").stop()

    def test_tagging_mirrors_locally(self, boto):
        ec2 = boto.client.return_value
        instance = Instance("us-east-1", "i-123")

        instance.whitelist("REAPER_SPARE_ME")
        ec2.create_tags.assert_called_once_with(
            Resources=["i-123"], Tags=[{"Key": "REAPER_SPARE_ME", "Value": "true"}])
        assert instance.tagged("REAPER_SPARE_ME")

        instance.untag_resource("REAPER_SPARE_ME")
        ec2.delete_tags.assert_called_once_with(Resources=["i-123"], Tags=[{"Key": "REAPER_SPARE_ME"}])
        assert not instance.tagged("REAPER_SPARE_ME")

    def test_save_writes_state_tag(self, boto):
        ec2 = boto.client.return_value
        instance = Instance("us-east-1", "i-123")

        instance.save("REAPER")

        tags = ec2.create_tags.call_args.kwargs["Tags"]
        assert tags == [{"Key": "REAPER", "Value": instance.reaper_state.serialize()}]


class TestAutoScalingGroup:
    """Test autoscaling groups."""

    def test_from_api(self, config):
        group = AutoScalingGroup.from_api("us-east-1", {
            "AutoScalingGroupName": "asg-1",
            "DesiredCapacity": 3,
            "MinSize": 1,
            "MaxSize": 5,
            "Instances": [{"InstanceId": "i-1"}, {"InstanceId": "i-2"}],
            "Tags": [{"Key": "aws:cloudformation:stack-name", "Value": "web"}],
        }, config)

        assert group.id == group.name == "asg-1"
        assert group.instances == ["i-1", "i-2"]
        assert group.is_in_cloudformation and group.dependency

    def test_scale_down_and_up(self, boto):
        api = boto.client.return_value
        group = AutoScalingGroup("us-east-1", "asg-1", desired_capacity=3, min_size=1)

        group.scale_down()
        assert group.tag(SCALED_DOWN_TAG) == "3:1"
        api.update_auto_scaling_group.assert_called_with(
            AutoScalingGroupName="asg-1", DesiredCapacity=0, MinSize=0)

        group.scale_up()
        api.update_auto_scaling_group.assert_called_with(
            AutoScalingGroupName="asg-1", DesiredCapacity=3, MinSize=1)
        assert group.desired_capacity == 3

    def test_terminate(self, boto):
        AutoScalingGroup("us-east-1", "asg-1").terminate()
        boto.client.return_value.delete_auto_scaling_group.assert_called_once_with(AutoScalingGroupName="asg-1")


class TestOtherKinds:
    """Test security groups, volumes and stacks."""

    def test_security_group(self, boto):
        group = SecurityGroup.from_api("us-east-1", {"GroupId": "sg-1", "GroupName": "web", "VpcId": "vpc-1"})
        group.terminate()

        assert group.group_name == "web"
        boto.client.return_value.delete_security_group.assert_called_once_with(GroupId="sg-1")
        with pytest.raises(UnsupportedAction):
            group.stop()

    def test_volume(self, boto):
        volume = Volume.from_api("us-east-1", {
            "VolumeId": "vol-1",
            "Size": 100,
            "State": "in-use",
            "VolumeType": "gp3",
            "Attachments": [{"InstanceId": "i-1", "State": "attached"},
                            {"InstanceId": "i-2", "State": "detached"}],
        })
        volume.terminate()

        assert volume.attached_instance_ids == ["i-1"]
        boto.client.return_value.delete_volume.assert_called_once_with(VolumeId="vol-1")

    def test_cloudformation(self, boto):
        api = boto.client.return_value
        stack = Cloudformation.from_api("us-east-1", {
            "StackId": "arn:aws:cloudformation:us-east-1:1:stack/web/abc",
            "StackName": "web",
            "StackStatus": "CREATE_COMPLETE",
            "Parameters": [{"ParameterKey": "Size", "ParameterValue": "2"}],
        }, resources=["i-1"])

        assert not stack.save("REAPER")
        api.update_stack.assert_not_called()

        stack.whitelist("REAPER_SPARE_ME")
        kwargs = api.update_stack.call_args.kwargs
        assert kwargs["UsePreviousTemplate"]
        assert kwargs["Parameters"] == [{"ParameterKey": "Size", "UsePreviousValue": True}]
        assert {"Key": "REAPER_SPARE_ME", "Value": "true"} in kwargs["Tags"]

        stack.terminate()
        api.delete_stack.assert_called_once_with(StackName=stack.id)


class TestDiscovery:
    """Test AWSDiscovery with mocked paginators."""

    def test_instances(self, boto, config):
        paginator = boto.client.return_value.get_paginator.return_value
        paginator.paginate.return_value = [{"Reservations": [{"Instances": [INSTANCE_DATA]}]}]

        instances = list(AWSDiscovery(config).instances())

        assert [i.id for i in instances] == ["i-123"]
        boto.client.return_value.get_paginator.assert_called_with("describe_instances")

    def test_failing_region_is_skipped(self, boto, config):
        config.regions = ["us-east-1", "us-west-2"]
        paginator = boto.client.return_value.get_paginator.return_value
        paginator.paginate.side_effect = [
            _client_error(),
            [{"Volumes": [{"VolumeId": "vol-1", "Size": 8}]}],
        ]

        volumes = list(AWSDiscovery(config).volumes())

        assert [(v.region, v.id) for v in volumes] == [("us-west-2", "vol-1")]

    def test_stacks_with_resources(self, boto, config):
        api = MagicMock()
        boto.client.return_value = api
        stacks = MagicMock()
        stacks.paginate.return_value = [{"Stacks": [{"StackId": "arn:stack/web", "StackName": "web"}]}]
        resources = MagicMock()
        resources.paginate.return_value = [{"StackResourceSummaries": [
            {"PhysicalResourceId": "i-1"}, {"LogicalResourceId": "Pending"},
        ]}]
        api.get_paginator.side_effect = lambda name: stacks if name == "describe_stacks" else resources

        found = list(AWSDiscovery(config).cloudformations())

        assert [s.resources for s in found] == [["i-1"]]
        resources.paginate.assert_called_once_with(StackName="arn:stack/web")
