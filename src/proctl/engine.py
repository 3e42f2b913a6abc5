"""The process-control engine: one object exposing every public operation."""

from pathlib import Path

import psutil

from proctl.collector import SnapshotCollector
from proctl.config import Config
from proctl.cpu import CpuHistory
from proctl.kill import KillOrchestrator, SignalSender
from proctl.models import KillOutcome, ProcessRecord
from proctl.procfs import ProcfsReader
from proctl.tree import descendants


class ProcessEngine:
    """
    Observe and control the processes of the local Linux host.

    Build one engine at start-up and share it between every caller: it owns
    the CPU history, so CPU percentages are only meaningful across calls made
    through the same instance. All operations are synchronous and safe to
    call from several threads at once.
    """

    def __init__(
        self,
        reader: ProcfsReader | None = None,
        history: CpuHistory | None = None,
        sender: SignalSender | None = None,
        grace_period: float = 0.5,
        resume_after_terminate: bool = False,
        cgroup_root: str | Path = "/sys/fs/cgroup",
    ) -> None:
        self.reader = reader or ProcfsReader()
        self.history = history or CpuHistory(
            clock_ticks_per_second=self.reader.clock_ticks_per_second
        )
        self.collector = SnapshotCollector(self.reader, self.history)
        self.killer = KillOrchestrator(
            self.reader,
            self.collector,
            sender=sender,
            grace_period=grace_period,
            resume_after_terminate=resume_after_terminate,
            cgroup_root=cgroup_root,
        )

    @classmethod
    def from_config(cls, config: Config, sender: SignalSender | None = None) -> "ProcessEngine":
        """Build an engine from loaded configuration.

        ``paths.proc_root`` is also handed to psutil, which reads every
        process attribute from that mount.
        """
        psutil.PROCFS_PATH = config.paths.proc_root
        reader = ProcfsReader(
            config.paths.proc_root,
            clock_ticks_per_second=config.sampling.clock_ticks_per_second or None,
        )
        history = CpuHistory(
            clock_ticks_per_second=reader.clock_ticks_per_second,
            min_interval=config.sampling.min_interval,
        )
        return cls(
            reader=reader,
            history=history,
            sender=sender,
            grace_period=config.kill.grace_period,
            resume_after_terminate=config.kill.resume_after_terminate,
            cgroup_root=config.paths.cgroup_root,
        )

    def list_processes(self) -> list[ProcessRecord]:
        """Snapshot every process with CPU and memory usage."""
        return self.collector.list_processes()

    def descendants(self, pid: int) -> set[int]:
        """All transitive children of ``pid`` in a fresh snapshot."""
        return descendants(self.collector.list_processes(), pid)

    def kill_pid(self, pid: int) -> KillOutcome:
        """Terminate one process with the graduated protocol."""
        return self.killer.kill_pid(pid)

    def kill_tree(self, pid: int) -> list[int]:
        """Terminate a process and all of its descendants."""
        return self.killer.kill_tree(pid)

    def kill_cgroup(self, path: str | Path) -> None:
        """Terminate every member of a cgroup v2 group."""
        self.killer.kill_cgroup(path)

    def kill_cgroup_of(self, pid: int) -> Path:
        """Terminate the cgroup that ``pid`` belongs to."""
        return self.killer.kill_cgroup_of(pid)
