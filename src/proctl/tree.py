"""Parent/child resolution over a process snapshot."""

from collections import defaultdict, deque
from collections.abc import Iterable

from proctl.errors import NotFound
from proctl.models import ProcessRecord


def children_map(records: Iterable[ProcessRecord]) -> dict[int, list[int]]:
    """Map each parent pid to the pids that name it as their parent."""
    children: defaultdict[int, list[int]] = defaultdict(list)
    for record in records:
        if record.ppid and record.ppid != record.pid:
            children[record.ppid].append(record.pid)
    return dict(children)


def _walk(children: dict[int, list[int]], root: int) -> dict[int, int]:
    """Breadth-first walk below ``root``; returns pid -> depth."""
    depths = {root: 0}
    queue = deque([root])
    while queue:
        pid = queue.popleft()
        for child in children.get(pid, ()):
            # Visited check keeps ppid cycles from looping forever
            if child in depths:
                continue
            depths[child] = depths[pid] + 1
            queue.append(child)
    return depths


def descendants(records: Iterable[ProcessRecord], root: int) -> set[int]:
    """
    Resolve every transitive child of ``root`` (excluding ``root`` itself).

    Raises:
        NotFound: If ``root`` is not in the snapshot.
    """
    records = list(records)
    if not any(record.pid == root for record in records):
        raise NotFound(root)
    found = set(_walk(children_map(records), root))
    found.discard(root)
    return found


def kill_order(records: Iterable[ProcessRecord], root: int) -> list[int]:
    """
    Return ``root`` and its descendants, deepest first and ``root`` last.

    Killing in this order means a parent never exits before its children, so
    none of them get re-parented to init mid-kill.

    Raises:
        NotFound: If ``root`` is not in the snapshot.
    """
    records = list(records)
    if not any(record.pid == root for record in records):
        raise NotFound(root)
    depths = _walk(children_map(records), root)
    return sorted(depths, key=lambda pid: (pid == root, -depths[pid], pid))
