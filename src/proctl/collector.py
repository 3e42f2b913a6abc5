"""Process snapshot collection for proctl."""

import structlog

from proctl.cpu import CpuHistory
from proctl.models import ProcessRecord
from proctl.procfs import ProcfsReader, ProcStat

log = structlog.get_logger()


class SnapshotCollector:
    """
    Enumerates every visible process with live CPU and memory usage.

    Enumeration is best-effort: a process whose state record cannot be read
    (it most likely exited mid-pass) is skipped, and a process whose memory
    cannot be read is reported with zero memory. Only a failure to list the
    process table or read the system CPU counters fails the whole call.
    """

    def __init__(self, reader: ProcfsReader, history: CpuHistory) -> None:
        """
        Initialize the SnapshotCollector.

        Args:
            reader: Kernel state reader.
            history: CPU history shared with every other collector pass.
        """
        self._reader = reader
        self._history = history

    @property
    def history(self) -> CpuHistory:
        """The CPU history this collector feeds."""
        return self._history

    def list_processes(self) -> list[ProcessRecord]:
        """
        Collect a snapshot of all running processes.

        Raises:
            ProcfsError: If the process table or the system CPU times are unreadable.
        """
        stats: dict[int, ProcStat] = {}
        for stat in self._reader.processes():
            if stat.pid in stats:
                log.debug("process_duplicate", pid=stat.pid)
                continue
            stats[stat.pid] = stat

        # Timestamp the pass at the system read, not at lock acquisition
        system = self._reader.read_system_cpu()
        now = self._history.clock()

        percents = self._history.update(
            {pid: stat.cpu_ticks for pid, stat in stats.items()},
            system,
            now=now,
        )

        return [
            ProcessRecord(
                pid=pid,
                name=stat.name,
                ppid=stat.ppid,
                state=stat.state,
                cpu_percent=percents[pid],
                memory_bytes=stat.rss,
            )
            for pid, stat in stats.items()
        ]
