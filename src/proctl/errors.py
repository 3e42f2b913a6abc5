"""Error types raised by proctl."""

from collections.abc import Mapping


class ProcError(Exception):
    """Base class for every error raised by the engine."""


class PermissionDenied(ProcError):
    """The kernel rejected a signal for lack of privilege."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"permission denied for PID {pid}")
        self.pid = pid


class UnkillableState(ProcError):
    """The target is in a state where signals have no effect (D or zombie)."""

    def __init__(self, pid: int, state: str = "") -> None:
        detail = f" ({state})" if state else ""
        super().__init__(f"process {pid} is in an unkillable state{detail}")
        self.pid = pid
        self.state = state


class NotFound(ProcError):
    """The target process does not exist."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"process {pid} not found")
        self.pid = pid


class SignalError(ProcError):
    """Sending a signal failed for a reason other than permission or absence."""

    def __init__(self, pid: int, cause: str) -> None:
        super().__init__(f"failed to send signal to PID {pid}: {cause}")
        self.pid = pid
        self.cause = cause


class CgroupError(ProcError):
    """The cgroup control file is missing or rejected the write."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"cgroup operation failed: {detail}")
        self.detail = detail


class ProcfsError(ProcError):
    """A kernel accounting record could not be read or parsed."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"procfs error: {detail}")
        self.detail = detail


class OtherError(ProcError):
    """Anything outside the taxonomy above."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class TreeKillError(ProcError):
    """One or more members of a process tree could not be killed.

    ``failures`` maps each failed pid to the error raised for it. Members
    not listed were killed (or had already exited).
    """

    def __init__(self, root: int, failures: Mapping[int, ProcError]) -> None:
        pids = ", ".join(str(pid) for pid in sorted(failures))
        super().__init__(f"failed to kill {len(failures)} process(es) in tree {root}: {pids}")
        self.root = root
        self.failures = dict(failures)
