"""CLI commands for proctl."""

import json
import time
from enum import Enum
from pathlib import Path

import click

from proctl.config import Config
from proctl.engine import ProcessEngine
from proctl.errors import ProcError, TreeKillError
from proctl.logging import configure
from proctl.models import ProcessRecord


class SortKey(Enum):
    """Sort keys for the process listing."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"


_SORTERS = {
    SortKey.CPU: (lambda p: p.cpu_percent, True),
    SortKey.MEM: (lambda p: p.memory_bytes, True),
    SortKey.PID: (lambda p: p.pid, False),
    SortKey.NAME: (lambda p: p.name.lower(), False),
}


def format_bytes(size: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{size:5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def _record_to_dict(record: ProcessRecord) -> dict:
    return {
        "pid": record.pid,
        "ppid": record.ppid,
        "name": record.name,
        "state": record.state.value,
        "cpu_percent": round(record.cpu_percent, 1),
        "memory_bytes": record.memory_bytes,
    }


def _engine(ctx: click.Context) -> ProcessEngine:
    return ProcessEngine.from_config(ctx.obj)


@click.group()
@click.version_option(package_name="proctl")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/proctl/config.toml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at debug level")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Observe and terminate Linux processes."""
    try:
        config = Config.load(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    configure(config, verbose=verbose)
    ctx.obj = config
    ctx.meta["config_path"] = config_path or config.config_path


@main.command("list")
@click.option(
    "--interval",
    "-i",
    default=1.0,
    show_default=True,
    help="Seconds between the two samples CPU usage is measured over",
)
@click.option(
    "--sort",
    "sort_key",
    type=click.Choice([k.value for k in SortKey]),
    default=SortKey.CPU.value,
    show_default=True,
)
@click.option("--limit", "-n", default=0, help="Show at most N processes (0 = all)")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def list_cmd(ctx: click.Context, interval: float, sort_key: str, limit: int, as_json: bool) -> None:
    """List processes with CPU and memory usage."""
    engine = _engine(ctx)
    try:
        records = engine.list_processes()
        if interval > 0:
            time.sleep(interval)
            records = engine.list_processes()
    except ProcError as e:
        raise click.ClickException(str(e)) from e

    key, reverse = _SORTERS[SortKey(sort_key)]
    records.sort(key=key, reverse=reverse)
    if limit > 0:
        records = records[:limit]

    if as_json:
        click.echo(json.dumps([_record_to_dict(r) for r in records], indent=2))
        return

    click.echo(f"CPU {engine.history.system_percent:5.1f}%  {len(records)} processes")
    click.echo(f"{'PID':>7} {'PPID':>7} {'STATE':<9} {'CPU%':>5} {'MEM':>7}  NAME")
    for r in records:
        click.echo(
            f"{r.pid:>7} {r.ppid:>7} {r.state.value:<9} {r.cpu_percent:5.1f} "
            f"{format_bytes(r.memory_bytes):>7}  {r.name}"
        )


@main.command()
@click.argument("pid", type=int)
@click.pass_context
def tree(ctx: click.Context, pid: int) -> None:
    """Print the descendants of PID."""
    try:
        found = _engine(ctx).descendants(pid)
    except ProcError as e:
        raise click.ClickException(str(e)) from e
    for child in sorted(found):
        click.echo(child)


@main.command()
@click.argument("pid", type=int)
@click.pass_context
def kill(ctx: click.Context, pid: int) -> None:
    """Stop, terminate and if needed force-kill PID."""
    try:
        outcome = _engine(ctx).kill_pid(pid)
    except ProcError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{pid}: {outcome.value}")


@main.command("kill-tree")
@click.argument("pid", type=int)
@click.pass_context
def kill_tree(ctx: click.Context, pid: int) -> None:
    """Kill PID and all of its descendants."""
    try:
        killed = _engine(ctx).kill_tree(pid)
    except TreeKillError as e:
        for member, error in sorted(e.failures.items()):
            click.echo(f"  {member}: {error}", err=True)
        raise click.ClickException(str(e)) from e
    except ProcError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Killed {len(killed)} process(es)")


@main.command("kill-cgroup")
@click.argument("path", required=False)
@click.option("--pid", type=int, default=None, help="Kill the cgroup this process belongs to")
@click.pass_context
def kill_cgroup(ctx: click.Context, path: str | None, pid: int | None) -> None:
    """Kill every process in the cgroup at PATH."""
    if (path is None) == (pid is None):
        raise click.UsageError("Give exactly one of PATH or --pid")

    engine = _engine(ctx)
    try:
        if pid is not None:
            killed = engine.kill_cgroup_of(pid)
        else:
            engine.kill_cgroup(path)
            killed = engine.killer.control_file(path).parent
    except ProcError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Killed cgroup {killed}")


@main.command("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Write the default config file if missing and print its path."""
    config: Config = ctx.obj
    path: Path = ctx.meta["config_path"]
    if not path.exists():
        config.save(path)
        click.echo(f"Created {path}")
    else:
        click.echo(str(path))
