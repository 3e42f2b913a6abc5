"""Tests for proctl data models."""

import pytest

from proctl.models import KillOutcome, ProcessRecord, ProcessState


def test_process_record_creation():
    """Test ProcessRecord dataclass creation."""
    record = ProcessRecord(
        pid=123,
        name="test_process",
        ppid=1,
        state=ProcessState.RUNNING,
        cpu_percent=50.0,
        memory_bytes=1024000,
    )

    assert record.pid == 123
    assert record.name == "test_process"
    assert record.ppid == 1
    assert record.state is ProcessState.RUNNING
    assert record.cpu_percent == 50.0
    assert record.memory_bytes == 1024000


def test_process_record_is_frozen():
    """Test that ProcessRecord is immutable (frozen)."""
    record = ProcessRecord(
        pid=1,
        name="init",
        ppid=0,
        state=ProcessState.SLEEPING,
        cpu_percent=0.1,
        memory_bytes=10000,
    )

    with pytest.raises(AttributeError):
        record.pid = 999


def test_process_record_uses_slots():
    """Test that ProcessRecord uses __slots__ for memory efficiency."""
    record = ProcessRecord(
        pid=1,
        name="init",
        ppid=0,
        state=ProcessState.SLEEPING,
        cpu_percent=0.1,
        memory_bytes=10000,
    )

    # Slots-based dataclasses don't have __dict__
    assert not hasattr(record, "__dict__")


class TestProcessState:
    """Tests for the kernel state alphabet."""

    def test_values_are_the_public_names(self):
        """The enum values are the documented state names."""
        assert {s.value for s in ProcessState} == {
            "running",
            "sleeping",
            "disk-wait",
            "zombie",
            "stopped",
            "idle",
        }

    def test_unkillable_states(self):
        """Only disk-wait and zombie processes are beyond signals."""
        unkillable = {s for s in ProcessState if s.unkillable}
        assert unkillable == {ProcessState.DISK_WAIT, ProcessState.ZOMBIE}


def test_kill_outcome_values():
    """KillOutcome values are stable strings for CLI output."""
    assert KillOutcome.ALREADY_GONE.value == "already-gone"
    assert KillOutcome.TERMINATED.value == "terminated"
    assert KillOutcome.KILLED.value == "killed"
