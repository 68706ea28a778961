"""
Tests for the Reapables registry and shared resource behaviour.
"""

import threading

import pytest

from awsreaper.aws import Instance, SecurityGroup
from awsreaper.errors import NotFound, UnsupportedAction
from awsreaper.reapable import CLOUDFORMATION_STACK_TAG, Reapables


class TestReapables:
    """Test registry operations."""

    def test_put_get(self):
        registry = Reapables()
        instance = Instance("us-east-1", "i-1")
        registry.put("us-east-1", "i-1", instance)

        assert registry.get("us-east-1", "i-1") is instance
        assert ("us-east-1", "i-1") in registry
        assert len(registry) == 1

    def test_missing_raises_not_found(self):
        registry = Reapables()
        registry.put("us-east-1", "i-1", Instance("us-east-1", "i-1"))

        with pytest.raises(NotFound) as info:
            registry.get("us-west-2", "i-1")
        assert info.value.region == "us-west-2"
        assert info.value.resource_id == "i-1"

    def test_last_writer_wins(self):
        registry = Reapables()
        old, new = Instance("us-east-1", "i-1"), Instance("us-east-1", "i-1")
        registry.put("us-east-1", "i-1", old)
        registry.put("us-east-1", "i-1", new)

        assert registry.get("us-east-1", "i-1") is new
        assert len(registry) == 1

    def test_iteration_is_a_snapshot(self):
        """Test writers can keep going while a reader iterates."""
        registry = Reapables()
        for n in range(3):
            registry.put("us-east-1", f"i-{n}", Instance("us-east-1", f"i-{n}"))

        seen = []
        for resource in registry:
            seen.append(resource.id)
            registry.put("us-east-1", f"new-{resource.id}", Instance("us-east-1", f"new-{resource.id}"))

        assert sorted(seen) == ["i-0", "i-1", "i-2"]
        assert len(registry) == 6

    def test_concurrent_puts(self):
        registry = Reapables()

        def writer(prefix):
            for n in range(200):
                registry.put("us-east-1", f"{prefix}-{n}", Instance("us-east-1", f"{prefix}-{n}"))

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 800


class TestReapable:
    """Test behaviour shared by every kind."""

    def test_stack_tag_marks_dependency(self):
        instance = Instance("us-east-1", "i-1", tags={CLOUDFORMATION_STACK_TAG: "web"})

        assert instance.is_in_cloudformation
        assert instance.dependency

    def test_state_restored_from_tag(self):
        instance = Instance("us-east-1", "i-1", tags={"REAPER": "SECOND|1700000000|1700003600"})
        instance.restore_state("REAPER")

        assert instance.reaper_state.state.value == "SECOND"
        assert not instance.reaper_state.updated

    def test_untagged_resource_state_is_marked_for_saving(self):
        instance = Instance("us-east-1", "i-1")
        instance.restore_state("REAPER")

        assert instance.reaper_state.state.value == "FIRST"
        assert instance.reaper_state.updated

    def test_unsupported_actions(self):
        group = SecurityGroup("us-east-1", "sg-1", group_name="web")

        with pytest.raises(UnsupportedAction):
            group.stop()
        with pytest.raises(UnsupportedAction):
            group.scale_down()

    def test_descriptions(self):
        instance = Instance("us-east-1", "i-1", name="web")
        instance.owner = "alice@example.com"

        assert instance.description_tiny() == "Instance i-1"
        assert instance.description_short() == 'Instance i-1 "web" in us-east-1'
        assert "owned by alice@example.com" in instance.description()
