"""Process, process-tree and cgroup termination."""

import errno
import os
import signal
import time
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

import psutil
import structlog

from proctl.collector import SnapshotCollector
from proctl.errors import (
    CgroupError,
    NotFound,
    OtherError,
    PermissionDenied,
    ProcError,
    ProcfsError,
    SignalError,
    TreeKillError,
    UnkillableState,
)
from proctl.models import KillOutcome
from proctl.procfs import ProcfsReader
from proctl.tree import kill_order

log = structlog.get_logger()

CGROUP_KILL_FILE = "cgroup.kill"


class SignalSender(Protocol):
    """Delivers signals to processes.

    ``send`` raises psutil.NoSuchProcess when the target is gone,
    psutil.AccessDenied when the caller lacks privilege and OSError for
    anything else.
    """

    def send(self, pid: int, sig: signal.Signals) -> None: ...

    def alive(self, pid: int) -> bool: ...


class PsutilSignalSender:
    """SignalSender backed by psutil."""

    def send(self, pid: int, sig: signal.Signals) -> None:
        psutil.Process(pid).send_signal(sig)

    def alive(self, pid: int) -> bool:
        """A zombie has already exited; it is only waiting to be reaped."""
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True


class KillOrchestrator:
    """
    Terminates processes with a graduated protocol.

    A single kill freezes the target (SIGSTOP) so it cannot fork while being
    killed, asks it to exit (SIGTERM), waits for the grace period, and sends
    SIGKILL only if it is still alive. With ``resume_after_terminate`` a
    SIGCONT follows the SIGTERM so a process with a handler can act on it. A
    target that disappears at any step counts as success, and a target left
    stopped by a failed step is sent SIGCONT before the error is raised.

    The calling process is never signalled.

    Calls block for the whole grace period and cannot be cancelled.
    """

    def __init__(
        self,
        reader: ProcfsReader,
        collector: SnapshotCollector,
        sender: SignalSender | None = None,
        grace_period: float = 0.5,
        resume_after_terminate: bool = False,
        cgroup_root: str | Path = "/sys/fs/cgroup",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the KillOrchestrator.

        Args:
            reader: Used for the state pre-check and cgroup lookups.
            collector: Provides the fresh snapshot a tree kill resolves against.
            sender: Signal delivery; psutil when omitted.
            grace_period: Seconds between SIGTERM and the liveness check.
            resume_after_terminate: Send SIGCONT after SIGTERM (unfreezes the
                target for the grace period).
            cgroup_root: Mount point of the cgroup v2 hierarchy.
            sleep: Blocking wait used for the grace period.
        """
        self._reader = reader
        self._collector = collector
        self._sender = sender or PsutilSignalSender()
        self.grace_period = grace_period
        self.resume_after_terminate = resume_after_terminate
        self.cgroup_root = Path(cgroup_root)
        self._sleep = sleep

    def kill_pid(self, pid: int) -> KillOutcome:
        """
        Run the stop, terminate, wait, check, kill sequence against one process.

        Raises:
            UnkillableState: The process is in disk-wait or is a zombie.
            PermissionDenied: A signal was rejected for lack of privilege.
            SignalError: A signal could not be sent for any other reason.
        """
        if pid <= 0:
            raise OtherError(f"refusing to signal non-positive PID {pid}")
        if pid == os.getpid():
            raise OtherError(f"refusing to signal the calling process (PID {pid})")

        try:
            stat = self._reader.read_stat(pid)
        except NotFound:
            log.debug("kill_target_gone", pid=pid, stage="precheck")
            return KillOutcome.ALREADY_GONE
        except ProcfsError as e:
            log.warning("kill_precheck_failed", pid=pid, error=str(e))
        else:
            if stat.state.unkillable:
                raise UnkillableState(pid, stat.state.value)

        if not self._signal(pid, signal.SIGSTOP):
            return KillOutcome.ALREADY_GONE
        log.debug("kill_stage", pid=pid, stage="stopped")

        try:
            return self._terminate_stopped(pid)
        except ProcError:
            self._release(pid)
            raise

    def _terminate_stopped(self, pid: int) -> KillOutcome:
        if not self._signal(pid, signal.SIGTERM):
            return KillOutcome.ALREADY_GONE
        log.debug("kill_stage", pid=pid, stage="terminating")

        if self.resume_after_terminate and not self._signal(pid, signal.SIGCONT):
            return KillOutcome.TERMINATED

        self._sleep(self.grace_period)

        if not self._sender.alive(pid):
            log.info("process_terminated", pid=pid)
            return KillOutcome.TERMINATED

        if not self._signal(pid, signal.SIGKILL):
            log.info("process_terminated", pid=pid)
            return KillOutcome.TERMINATED
        log.info("process_killed", pid=pid)
        return KillOutcome.KILLED

    def _release(self, pid: int) -> None:
        """Best-effort SIGCONT so a failed kill does not leave the target frozen."""
        try:
            self._sender.send(pid, signal.SIGCONT)
        except (OSError, psutil.Error) as e:
            log.warning("kill_release_failed", pid=pid, error=str(e))
        else:
            log.info("kill_released", pid=pid)

    def _signal(self, pid: int, sig: signal.Signals) -> bool:
        """Send one signal; False when the target no longer exists."""
        try:
            self._sender.send(pid, sig)
        except psutil.NoSuchProcess:
            log.debug("kill_target_gone", pid=pid, signal=sig.name)
            return False
        except psutil.AccessDenied as e:
            raise PermissionDenied(pid) from e
        except (OSError, psutil.Error) as e:
            raise SignalError(pid, f"{sig.name}: {e}") from e
        log.debug("kill_signal_sent", pid=pid, signal=sig.name)
        return True

    def kill_tree(self, pid: int) -> list[int]:
        """
        Kill ``pid`` and every descendant, children before parents.

        Every member is attempted even when earlier ones fail. When the
        calling process is itself a member it is left out, so the caller
        never stops itself halfway through the tree.

        Returns:
            The pids that were targeted, in kill order.

        Raises:
            NotFound: ``pid`` is not in the current process table.
            OtherError: ``pid`` is the calling process.
            TreeKillError: One or more members failed; see ``failures``.
        """
        own_pid = os.getpid()
        if pid == own_pid:
            raise OtherError(f"refusing to kill the tree of the calling process (PID {pid})")

        records = self._collector.list_processes()
        order = kill_order(records, pid)
        if own_pid in order:
            order.remove(own_pid)
            log.warning("tree_member_skipped", root=pid, pid=own_pid, reason="calling process")
        log.info("tree_kill_started", pid=pid, members=len(order))

        failures: dict[int, ProcError] = {}
        for member in order:
            try:
                self.kill_pid(member)
            except ProcError as e:
                log.warning("tree_member_failed", root=pid, pid=member, error=str(e))
                failures[member] = e

        if failures:
            raise TreeKillError(pid, failures)
        return order

    def control_file(self, path: str | Path) -> Path:
        """
        Resolve a cgroup directory or control file to its cgroup.kill file.

        Relative paths are taken relative to the cgroup root.
        """
        path = Path(path)
        if not path.is_absolute():
            path = self.cgroup_root / path
        if path.name != CGROUP_KILL_FILE:
            path = path / CGROUP_KILL_FILE
        return path

    def kill_cgroup(self, path: str | Path) -> None:
        """
        Have the kernel kill every process in a cgroup and its descendants.

        Raises:
            CgroupError: The control file is missing or the write was rejected.
        """
        control = self.control_file(path)
        if not control.is_file():
            raise CgroupError(f"{control} not found (requires cgroup v2 on Linux 5.14+)")

        try:
            fd = os.open(control, os.O_WRONLY)
            try:
                os.write(fd, b"1")
            finally:
                os.close(fd)
        except PermissionError as e:
            raise CgroupError(f"permission denied writing {control}") from e
        except OSError as e:
            if e.errno in (errno.ENOENT, errno.ENODEV):
                # The cgroup was removed underneath us, so it has no members left
                log.info("cgroup_already_gone", path=str(control.parent))
                return
            raise CgroupError(f"cannot write {control}: {e}") from e

        log.info("cgroup_killed", path=str(control.parent))

    def kill_cgroup_of(self, pid: int) -> Path:
        """
        Kill the whole cgroup ``pid`` belongs to.

        Returns:
            The cgroup directory that was killed.

        Raises:
            NotFound: ``pid`` does not exist.
            CgroupError: ``pid`` lives in the root cgroup, or the kill failed.
        """
        try:
            relative = self._reader.read_cgroup(pid)
        except ProcfsError as e:
            raise CgroupError(e.detail) from e
        if relative.strip("/") == "":
            raise CgroupError(f"PID {pid} is in the root cgroup; refusing to kill it")

        path = self.cgroup_root / relative.lstrip("/")
        self.kill_cgroup(path)
        return path
