"""Shared test fixtures for proctl."""

import contextlib
import signal
from collections import namedtuple
from dataclasses import dataclass
from pathlib import Path

import psutil
import psutil._common
import pytest

from proctl.collector import SnapshotCollector
from proctl.cpu import CpuHistory
from proctl.kill import KillOrchestrator
from proctl.procfs import ProcfsReader

ALIVE_CHECK = "alive?"
CLOCK_TICKS = 100
PAGE_SIZE = 4096

# Kernel state letters as psutil reports them
_STATUSES = {
    "R": psutil.STATUS_RUNNING,
    "S": psutil.STATUS_SLEEPING,
    "D": psutil.STATUS_DISK_SLEEP,
    "Z": psutil.STATUS_ZOMBIE,
    "X": psutil.STATUS_DEAD,
    "T": psutil.STATUS_STOPPED,
    "t": psutil.STATUS_TRACING_STOP,
    "I": psutil.STATUS_IDLE,
    "W": psutil.STATUS_WAKING,
    "K": psutil._common.STATUS_WAKE_KILL,
    "P": psutil.STATUS_PARKED,
}

CpuTimes = namedtuple("CpuTimes", "user system children_user children_system")
MemoryInfo = namedtuple("MemoryInfo", "rss vms")
SystemTimes = namedtuple(
    "SystemTimes", "user nice system idle iowait irq softirq steal guest guest_nice"
)


@dataclass
class FakeEntry:
    name: str
    status: str
    ppid: int
    utime: int
    stime: int
    rss_pages: int


class FakeProcess:
    """Stands in for psutil.Process, reading from a FakeProc table."""

    def __init__(self, table: "FakeProc", pid: int) -> None:
        self._table = table
        self.pid = pid
        self.info: dict = {}
        self._entry()

    def _entry(self, attr: str | None = None) -> FakeEntry:
        entry = self._table.entries.get(self.pid)
        if entry is None:
            raise psutil.NoSuchProcess(self.pid)
        error = self._table.errors.get((self.pid, attr))
        if error is not None:
            raise error(self.pid)
        return entry

    def oneshot(self):
        return contextlib.nullcontext()

    def name(self) -> str:
        return self._entry("name").name

    def status(self) -> str:
        return self._entry("status").status

    def ppid(self) -> int:
        return self._entry("ppid").ppid

    def cpu_times(self) -> CpuTimes:
        entry = self._entry("cpu_times")
        return CpuTimes(entry.utime / CLOCK_TICKS, entry.stime / CLOCK_TICKS, 0.0, 0.0)

    def memory_info(self) -> MemoryInfo:
        entry = self._entry("memory_info")
        return MemoryInfo(entry.rss_pages * PAGE_SIZE, 0)


class FakeProc:
    """
    A miniature process table served through psutil's API.

    Process attributes live in memory; the per-process cgroup files, which
    are read from procfs directly, are written under ``root``.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.entries: dict[int, FakeEntry] = {}
        self.vanishing: set[int] = set()
        self.errors: dict[tuple[int, str | None], type[psutil.Error]] = {}
        self.listing_error: OSError | None = None
        self.system_error: OSError | None = None
        self.set_system()

    def add(
        self,
        pid: int,
        name: str = "proc",
        state: str = "S",
        ppid: int = 1,
        utime: int = 0,
        stime: int = 0,
        rss_pages: int = 10,
        cgroup: str = "0::/user.slice/app.scope",
    ) -> None:
        """Create or overwrite the records of one process."""
        self.entries[pid] = FakeEntry(
            name=name,
            status=_STATUSES.get(state, "?"),
            ppid=ppid,
            utime=utime,
            stime=stime,
            rss_pages=rss_pages,
        )
        pid_dir = self.root / str(pid)
        pid_dir.mkdir(exist_ok=True)
        (pid_dir / "cgroup").write_text(f"{cgroup}\n")

    def remove(self, pid: int) -> None:
        del self.entries[pid]
        (self.root / str(pid) / "cgroup").unlink()
        (self.root / str(pid)).rmdir()

    def vanish(self, pid: int) -> None:
        """Keep ``pid`` in the pid list but make every read of it fail as exited."""
        del self.entries[pid]
        self.vanishing.add(pid)

    def deny(self, pid: int, attr: str, error: type[psutil.Error] = psutil.AccessDenied) -> None:
        """Make reading one attribute of ``pid`` raise ``error``."""
        self.errors[(pid, attr)] = error

    def set_system(
        self,
        user: int = 0,
        nice: int = 0,
        system: int = 0,
        idle: int = 0,
        iowait: int = 0,
        guest: int = 0,
    ) -> None:
        """Set the machine-wide cumulative ticks."""
        self.system = (user, nice, system, idle, iowait, 0, 0, 0, guest, 0)

    # psutil API

    def pids(self) -> list[int]:
        if self.listing_error is not None:
            raise self.listing_error
        return sorted(set(self.entries) | self.vanishing)

    def process(self, pid: int) -> FakeProcess:
        return FakeProcess(self, pid)

    def process_iter(self, attrs=None, ad_value=None):
        for pid in self.pids():
            try:
                proc = FakeProcess(self, pid)
                if attrs is not None:
                    proc.info = {"pid": pid}
                    for attr in attrs:
                        if attr == "pid":
                            continue
                        try:
                            proc.info[attr] = getattr(proc, attr)()
                        except (psutil.AccessDenied, psutil.ZombieProcess):
                            proc.info[attr] = ad_value
            except psutil.NoSuchProcess:
                continue
            yield proc

    def cpu_times(self, percpu: bool = False) -> SystemTimes:
        if self.system_error is not None:
            raise self.system_error
        return SystemTimes(*(ticks / CLOCK_TICKS for ticks in self.system))

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(psutil, "pids", self.pids)
        monkeypatch.setattr(psutil, "Process", self.process)
        monkeypatch.setattr(psutil, "process_iter", self.process_iter)
        monkeypatch.setattr(psutil, "cpu_times", self.cpu_times)


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSignalSender:
    """
    Records every signal and liveness check instead of touching real processes.

    Pids in ``alive`` exist; signalling anything else raises NoSuchProcess.
    A pid exits when it receives SIGKILL or the signal named in ``exit_on``.
    ``fail_on`` raises an error for one signal to one pid only.
    """

    def __init__(
        self,
        alive: set[int] | None = None,
        denied: set[int] | None = None,
        failing: dict[int, OSError] | None = None,
        exit_on: dict[int, signal.Signals] | None = None,
        fail_on: dict[tuple[int, signal.Signals], Exception] | None = None,
    ) -> None:
        self.alive_pids = set(alive or ())
        self.denied = set(denied or ())
        self.failing = dict(failing or {})
        self.exit_on = dict(exit_on or {})
        self.fail_on = dict(fail_on or {})
        self.calls: list[tuple[int, object]] = []

    def send(self, pid: int, sig: signal.Signals) -> None:
        self.calls.append((pid, sig))
        if pid in self.denied:
            raise psutil.AccessDenied(pid)
        if pid in self.failing:
            raise self.failing[pid]
        if (pid, sig) in self.fail_on:
            raise self.fail_on[(pid, sig)]
        if pid not in self.alive_pids:
            raise psutil.NoSuchProcess(pid)
        if sig == signal.SIGKILL or self.exit_on.get(pid) == sig:
            self.alive_pids.discard(pid)

    def alive(self, pid: int) -> bool:
        self.calls.append((pid, ALIVE_CHECK))
        return pid in self.alive_pids

    def sequence(self, pid: int) -> list[object]:
        """Signals and liveness checks sent to one pid, in order."""
        return [sig for target, sig in self.calls if target == pid]


@pytest.fixture(autouse=True)
def restore_procfs_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Engines built from config repoint psutil.PROCFS_PATH; undo it after each test."""
    monkeypatch.setattr(psutil, "PROCFS_PATH", psutil.PROCFS_PATH)


@pytest.fixture
def proc(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeProc:
    """An empty fake process table, installed in place of psutil's."""
    table = FakeProc(tmp_path / "proc")
    table.install(monkeypatch)
    return table


@pytest.fixture
def reader(proc: FakeProc) -> ProcfsReader:
    """A reader over the fake process table with a fixed USER_HZ."""
    return ProcfsReader(proc.root, clock_ticks_per_second=CLOCK_TICKS)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def history(clock: ManualClock) -> CpuHistory:
    return CpuHistory(clock_ticks_per_second=CLOCK_TICKS, min_interval=1.0, clock=clock)


@pytest.fixture
def collector(reader: ProcfsReader, history: CpuHistory) -> SnapshotCollector:
    return SnapshotCollector(reader, history)


@pytest.fixture
def sender() -> FakeSignalSender:
    return FakeSignalSender()


@pytest.fixture
def sleeps() -> list[float]:
    """Every grace-period wait requested by the orchestrator."""
    return []


@pytest.fixture
def killer(
    reader: ProcfsReader,
    collector: SnapshotCollector,
    sender: FakeSignalSender,
    sleeps: list[float],
    tmp_path: Path,
) -> KillOrchestrator:
    """Orchestrator wired to the fake procfs and signal sender, with no real waiting."""
    return KillOrchestrator(
        reader,
        collector,
        sender=sender,
        grace_period=0.5,
        cgroup_root=tmp_path / "cgroup",
        sleep=sleeps.append,
    )
