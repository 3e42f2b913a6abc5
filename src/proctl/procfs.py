"""Kernel process accounting, read through psutil."""

import errno
import os
from dataclasses import dataclass
from pathlib import Path

import psutil
import psutil._common
import structlog

from proctl.errors import NotFound, ProcfsError
from proctl.models import ProcessState

log = structlog.get_logger()

# Attributes fetched per process in one enumeration pass
_ATTRS = ["pid", "name", "ppid", "status", "cpu_times", "memory_info"]

# Fields of psutil.cpu_times() that make up busy + idle time.
# guest and guest_nice are already folded into user and nice by the kernel.
_SYSTEM_CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
_IDLE_FIELDS = ("idle", "iowait")

_STATES = {
    psutil.STATUS_RUNNING: ProcessState.RUNNING,
    psutil.STATUS_SLEEPING: ProcessState.SLEEPING,
    psutil.STATUS_DISK_SLEEP: ProcessState.DISK_WAIT,
    psutil.STATUS_ZOMBIE: ProcessState.ZOMBIE,
    psutil.STATUS_DEAD: ProcessState.ZOMBIE,
    psutil.STATUS_STOPPED: ProcessState.STOPPED,
    psutil.STATUS_TRACING_STOP: ProcessState.STOPPED,
    psutil.STATUS_IDLE: ProcessState.IDLE,
    # Legacy kernel states
    psutil.STATUS_WAKING: ProcessState.RUNNING,
    psutil._common.STATUS_WAKE_KILL: ProcessState.SLEEPING,
    psutil.STATUS_PARKED: ProcessState.IDLE,
}


def state_from_status(status: str) -> ProcessState:
    """
    Map a psutil status string onto the fixed state alphabet.

    Raises:
        ValueError: If the status is not a known kernel state.
    """
    try:
        return _STATES[status]
    except KeyError:
        raise ValueError(f"unknown process status: {status!r}") from None


@dataclass(slots=True, frozen=True)
class ProcStat:
    """The accounting record of one process."""

    pid: int
    name: str
    state: ProcessState
    ppid: int
    utime: int  # clock ticks
    stime: int  # clock ticks
    rss: int = 0  # bytes; 0 when unreadable

    @property
    def cpu_ticks(self) -> int:
        """Cumulative user + kernel ticks."""
        return self.utime + self.stime


@dataclass(slots=True, frozen=True)
class SystemCpuTimes:
    """Cumulative ticks summed across all cores."""

    total: int
    idle: int  # idle + iowait


def _default_clock_ticks() -> int:
    try:
        return os.sysconf("SC_CLK_TCK")
    except (ValueError, OSError):
        return 100


class ProcfsReader:
    """
    Stateless reader of per-process and system-wide kernel accounting.

    Process state, CPU times and memory come from psutil, which reads the
    procfs mount named by ``psutil.PROCFS_PATH``. psutil reports CPU time in
    seconds; it is converted back to clock ticks here so that process and
    system counters share one unit. Cgroup membership, which psutil does not
    cover, is read from ``<root>/<pid>/cgroup``.

    Per-process reads raise NotFound when the process has exited and
    ProcfsError for any other failure. Nothing is retried.
    """

    def __init__(
        self,
        root: str | Path | None = None,
        clock_ticks_per_second: int | None = None,
    ) -> None:
        """
        Initialize the reader.

        Args:
            root: Where procfs is mounted; psutil's PROCFS_PATH when omitted.
            clock_ticks_per_second: USER_HZ; asked from the OS when omitted.
        """
        self._root = Path(root if root is not None else psutil.PROCFS_PATH)
        self.clock_ticks_per_second = clock_ticks_per_second or _default_clock_ticks()

    @property
    def root(self) -> Path:
        """The procfs mount point."""
        return self._root

    def _ticks(self, seconds: float) -> int:
        return round(seconds * self.clock_ticks_per_second)

    def _stat(
        self,
        pid: int,
        name: str | None,
        status: str,
        ppid: int | None,
        times,
        rss: int,
    ) -> ProcStat:
        try:
            state = state_from_status(status)
        except ValueError as e:
            raise ProcfsError(f"PID {pid}: {e}") from e
        return ProcStat(
            pid=pid,
            name=name or "",
            state=state,
            ppid=ppid or 0,
            utime=self._ticks(times.user),
            stime=self._ticks(times.system),
            rss=rss,
        )

    def processes(self) -> list[ProcStat]:
        """
        Read every visible process in one pass.

        Best-effort: a process that exits mid-pass, or whose state or CPU
        times cannot be read, is skipped. A process whose memory cannot be
        read is reported with an rss of 0.

        Raises:
            ProcfsError: If the process table itself cannot be listed.
        """
        stats: list[ProcStat] = []
        try:
            for proc in psutil.process_iter(attrs=_ATTRS, ad_value=None):
                info = proc.info
                pid = info["pid"]
                if info["status"] is None or info["cpu_times"] is None:
                    log.debug("process_skipped", pid=pid, reason="access denied")
                    continue

                mem_info = info["memory_info"]
                if mem_info is None:
                    log.debug("process_memory_unavailable", pid=pid)

                try:
                    stats.append(
                        self._stat(
                            pid,
                            info["name"],
                            info["status"],
                            info["ppid"],
                            info["cpu_times"],
                            mem_info.rss if mem_info else 0,
                        )
                    )
                except ProcfsError as e:
                    log.debug("process_skipped", pid=pid, reason=str(e))
        except OSError as e:
            raise ProcfsError(f"cannot list processes under {psutil.PROCFS_PATH}: {e}") from e
        return stats

    def read_stat(self, pid: int) -> ProcStat:
        """Read the accounting record of one process."""
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                name = proc.name()
                status = proc.status()
                ppid = proc.ppid()
                times = proc.cpu_times()
                try:
                    rss = proc.memory_info().rss
                except psutil.AccessDenied:
                    rss = 0
        except psutil.ZombieProcess as e:
            # Exited but not yet reaped; only the identity survives
            return ProcStat(
                pid=pid,
                name=e.name or "",
                state=ProcessState.ZOMBIE,
                ppid=e.ppid or 0,
                utime=0,
                stime=0,
            )
        except psutil.NoSuchProcess as e:
            raise NotFound(pid) from e
        except psutil.AccessDenied as e:
            raise ProcfsError(f"access denied reading PID {pid}") from e
        except OSError as e:
            raise ProcfsError(f"cannot read PID {pid}: {e}") from e
        return self._stat(pid, name, status, ppid, times, rss)

    def read_cgroup(self, pid: int) -> str:
        """
        Return the cgroup v2 path of a process, relative to the cgroup mount.

        Raises:
            ProcfsError: If the process has no unified-hierarchy membership.
        """
        path = self._root / str(pid) / "cgroup"
        try:
            text = path.read_text(errors="replace")
        except (FileNotFoundError, ProcessLookupError) as e:
            raise NotFound(pid) from e
        except OSError as e:
            if e.errno == errno.ESRCH:
                raise NotFound(pid) from e
            raise ProcfsError(f"cannot read {path}: {e}") from e

        for line in text.splitlines():
            # Format: hierarchy-ID:controller-list:cgroup-path, v2 is "0::<path>"
            hierarchy, _, rest = line.partition(":")
            controllers, _, cgroup = rest.partition(":")
            if hierarchy == "0" and controllers == "" and cgroup:
                return cgroup
        raise ProcfsError(f"PID {pid} has no cgroup v2 membership")

    def read_system_cpu(self) -> SystemCpuTimes:
        """Sum the machine-wide CPU times across all cores."""
        try:
            times = psutil.cpu_times()
        except OSError as e:
            raise ProcfsError(f"cannot read system CPU times: {e}") from e

        total = sum(getattr(times, name, 0.0) for name in _SYSTEM_CPU_FIELDS)
        idle = sum(getattr(times, name, 0.0) for name in _IDLE_FIELDS)
        return SystemCpuTimes(total=self._ticks(total), idle=self._ticks(idle))
