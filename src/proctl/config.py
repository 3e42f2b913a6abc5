"""Configuration system for proctl."""

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class SamplingConfig:
    """CPU sampling configuration."""

    min_interval: float = 1.0  # Seconds between samples used for a rate (0 = no floor)
    clock_ticks_per_second: int = 0  # 0 = ask the OS (SC_CLK_TCK)


@dataclass
class KillConfig:
    """Termination protocol configuration."""

    grace_period: float = 0.5  # Seconds between SIGTERM and the SIGKILL decision
    resume_after_terminate: bool = False  # SIGCONT after SIGTERM (unfreezes the target)


@dataclass
class PathsConfig:
    """Kernel interface mount points."""

    proc_root: str = "/proc"
    cgroup_root: str = "/sys/fs/cgroup"


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "WARNING"
    json: bool = False  # JSON lines instead of the console renderer


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def _section(cls: type, data: dict, name: str, defaults: object) -> object:
    """Build a section dataclass, falling back to defaults for missing keys."""
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise TypeError(f"[{name}] must be a table, got {type(section).__name__}")
    values = {}
    for f in fields(cls):
        value = section.get(f.name, getattr(defaults, f.name))
        # tomlkit items wrap plain values; unwrap so dataclasses hold builtins
        values[f.name] = value.unwrap() if hasattr(value, "unwrap") else value
    return cls(**values)


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    kill: KillConfig = field(default_factory=KillConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "proctl"

    @property
    def config_path(self) -> Path:
        """Path to config file; PROCTL_CONFIG overrides the default location."""
        override = os.environ.get("PROCTL_CONFIG")
        if override:
            return Path(override)
        return self.config_dir / "config.toml"

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ValueError: If any value is out of range.
        """
        if self.sampling.min_interval < 0:
            raise ValueError(
                f"sampling.min_interval must be >= 0, got {self.sampling.min_interval}"
            )
        if self.sampling.clock_ticks_per_second < 0:
            raise ValueError(
                "sampling.clock_ticks_per_second must be >= 0, "
                f"got {self.sampling.clock_ticks_per_second}"
            )
        if self.kill.grace_period < 0:
            raise ValueError(f"kill.grace_period must be >= 0, got {self.kill.grace_period}")
        if self.logging.level.upper() not in _LOG_LEVELS:
            raise ValueError(
                f"Unknown log level: {self.logging.level!r}. Valid levels: {list(_LOG_LEVELS)}"
            )

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("sampling", "kill", "paths", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        try:
            config = cls(
                sampling=_section(SamplingConfig, data, "sampling", defaults.sampling),
                kill=_section(KillConfig, data, "kill", defaults.kill),
                paths=_section(PathsConfig, data, "paths", defaults.paths),
                logging=_section(LoggingConfig, data, "logging", defaults.logging),
            )
            config.validate()
        except (TypeError, AttributeError) as e:
            # Wrong value types, e.g. a string where a number belongs
            raise ValueError(f"Invalid config file {path}: {e}") from e
        return config
