"""CPU utilization estimation from cumulative kernel tick counters."""

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

import structlog

from proctl.procfs import SystemCpuTimes

log = structlog.get_logger()


@dataclass(slots=True)
class CpuSample:
    """Last committed observation of one process."""

    ticks: int
    timestamp: float


@dataclass(slots=True)
class SystemCpuSample:
    """Last committed observation of the whole machine."""

    total: int
    idle: int
    timestamp: float


class CpuHistory:
    """
    Per-PID and system-wide tick history shared by every enumeration.

    A process is reported at 0% until two of its samples are at least
    ``min_interval`` seconds apart; after that its percentage is the share of
    all system ticks it consumed between the two samples, clamped to
    [0, 100]. Samples for processes absent from the latest enumeration are
    evicted, so memory stays proportional to the live process count.

    All methods are thread-safe; one ``update`` call is atomic with respect to
    every other caller.
    """

    def __init__(
        self,
        clock_ticks_per_second: int = 100,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize an empty history.

        Args:
            clock_ticks_per_second: USER_HZ, used when the system delta is zero.
            min_interval: Minimum seconds between two samples used for a rate.
            clock: Monotonic time source.
        """
        self.clock_ticks_per_second = clock_ticks_per_second
        self.min_interval = min_interval
        self.clock = clock
        self._lock = threading.Lock()
        self._samples: dict[int, CpuSample] = {}
        self._system: SystemCpuSample | None = None
        self._system_percent = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def __contains__(self, pid: object) -> bool:
        with self._lock:
            return pid in self._samples

    def tracked_pids(self) -> set[int]:
        """Pids that currently have a stored sample."""
        with self._lock:
            return set(self._samples)

    def clear(self) -> None:
        """Forget every per-PID and system sample."""
        with self._lock:
            self._samples.clear()
            self._system = None
            self._system_percent = 0.0

    @property
    def system_percent(self) -> float:
        """Busy share of the whole machine over the last committed interval, 0 until known."""
        with self._lock:
            return self._system_percent

    def update(
        self,
        ticks_by_pid: Mapping[int, int],
        system: SystemCpuTimes,
        now: float | None = None,
    ) -> dict[int, float]:
        """
        Run one enumeration pass.

        Every pid is measured against the same stored system sample, which is
        then committed if it is old enough. Pids missing from ``ticks_by_pid``
        are evicted.

        Args:
            ticks_by_pid: Cumulative user + kernel ticks of every live process.
            system: System-wide cumulative ticks read for this pass.
            now: Observation time; read from the clock when omitted.

        Returns:
            CPU percentage for every pid in ``ticks_by_pid``.
        """
        with self._lock:
            if now is None:
                now = self.clock()
            system_elapsed = self._system_elapsed(now)
            percents = {
                pid: self._estimate(pid, ticks, system, now, system_elapsed)
                for pid, ticks in ticks_by_pid.items()
            }
            self._commit_system(system, now, system_elapsed)
            self._evict(ticks_by_pid.keys())
        return percents

    def percent(
        self,
        pid: int,
        ticks: int,
        system: SystemCpuTimes,
        now: float | None = None,
    ) -> float:
        """Measure a single process outside of a full pass (no eviction)."""
        with self._lock:
            if now is None:
                now = self.clock()
            system_elapsed = self._system_elapsed(now)
            result = self._estimate(pid, ticks, system, now, system_elapsed)
            self._commit_system(system, now, system_elapsed)
        return result

    def evict(self, live_pids: Iterable[int]) -> int:
        """Drop samples for every pid not in ``live_pids``; return how many."""
        with self._lock:
            return self._evict(live_pids)

    def _system_elapsed(self, now: float) -> float:
        if self._system is None:
            return 0.0
        return now - self._system.timestamp

    def _estimate(
        self,
        pid: int,
        ticks: int,
        system: SystemCpuTimes,
        now: float,
        system_elapsed: float,
    ) -> float:
        sample = self._samples.get(pid)
        if sample is None or self._system is None:
            self._samples[pid] = CpuSample(ticks=ticks, timestamp=now)
            return 0.0

        elapsed = now - sample.timestamp
        if elapsed < self.min_interval or system_elapsed < self.min_interval:
            # Keep the old sample so the next pass sees the accumulated interval
            return 0.0

        process_delta = max(0, ticks - sample.ticks)
        system_delta = max(0, system.total - self._system.total)
        if system_delta > 0:
            percent = 100.0 * process_delta / system_delta
        elif elapsed > 0:
            percent = 100.0 * (process_delta / self.clock_ticks_per_second) / elapsed
        else:
            percent = 0.0

        sample.ticks = ticks
        sample.timestamp = now
        return min(100.0, max(0.0, percent))

    def _commit_system(self, system: SystemCpuTimes, now: float, system_elapsed: float) -> None:
        if self._system is not None and system_elapsed >= self.min_interval:
            total_delta = system.total - self._system.total
            if total_delta > 0:
                busy_delta = total_delta - (system.idle - self._system.idle)
                self._system_percent = min(100.0, max(0.0, 100.0 * busy_delta / total_delta))
        if self._system is None or system_elapsed >= self.min_interval:
            self._system = SystemCpuSample(total=system.total, idle=system.idle, timestamp=now)

    def _evict(self, live_pids: Iterable[int]) -> int:
        live = set(live_pids)
        stale = [pid for pid in self._samples if pid not in live]
        for pid in stale:
            del self._samples[pid]
        if stale:
            log.debug("cpu_history_evicted", count=len(stale), tracked=len(self._samples))
        return len(stale)
