"""Data models for proctl."""

from dataclasses import dataclass
from enum import Enum


class ProcessState(Enum):
    """Scheduling state of a process, as reported by the kernel."""

    RUNNING = "running"
    SLEEPING = "sleeping"
    DISK_WAIT = "disk-wait"
    ZOMBIE = "zombie"
    STOPPED = "stopped"
    IDLE = "idle"

    @property
    def unkillable(self) -> bool:
        """True when signals cannot change the process's disposition."""
        return self in (ProcessState.DISK_WAIT, ProcessState.ZOMBIE)


class KillOutcome(Enum):
    """How a successful single-process kill ended."""

    ALREADY_GONE = "already-gone"
    TERMINATED = "terminated"
    KILLED = "killed"


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of one process at one observation instant."""

    pid: int
    name: str
    ppid: int  # 0 when kernel-owned or parentless
    state: ProcessState
    cpu_percent: float  # 0.0 - 100.0 of the whole machine
    memory_bytes: int  # RSS
