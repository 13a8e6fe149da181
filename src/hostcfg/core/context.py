"""Execution context for commands.

The ExecutionContext holds the current state and flags that affect
how steps are executed. It is passed to the compiler, the firewall
steps and the executor instead of reading process-wide globals.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from hostcfg.core.config import AppConfig, DEFAULT_CONFIG_PATH
from hostcfg.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Execution context passed to all commands.

    Attributes:
        dry_run: If True, show what would happen without executing
        force: If True, allow every dangerous step
        forced_steps: Names of individual dangerous steps allowed to apply
        verbosity: Output verbosity level (0-3)
        no_color: If True, disable colored output
        config_path: Path to configuration file
    """

    # Runtime flags
    dry_run: bool = False
    force: bool = False
    forced_steps: frozenset[str] = frozenset()
    verbosity: int = 1
    no_color: bool = False

    # Configuration
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Internal state (initialized lazily)
    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        """Configure console after initialization."""
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Get application configuration (lazy loaded)."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        """Get console for output."""
        return self._console

    @property
    def is_verbose(self) -> bool:
        """Check if verbose output is enabled."""
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def is_quiet(self) -> bool:
        """Check if quiet mode is enabled."""
        return self.verbosity <= Verbosity.QUIET

    def is_forced(self, step: str) -> bool:
        """Check if a dangerous step was explicitly allowed to apply."""
        return self.force or "all" in self.forced_steps or step in self.forced_steps


def create_context(
    dry_run: bool = False,
    force: bool = False,
    force_steps: Optional[list[str]] = None,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    HOSTCFG_CONFIG and HOSTCFG_FORCE fill in when the matching
    options are not given.

    Args:
        dry_run: Preview changes without executing
        force: Allow all dangerous steps
        force_steps: Dangerous steps allowed individually
        verbose: Increase verbosity (can be repeated)
        quiet: Suppress non-essential output
        no_color: Disable colored output
        config: Path to configuration file

    Returns:
        Configured execution context
    """
    from hostcfg.core.config import AgentSettings

    settings = AgentSettings()

    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    forced = set(force_steps or []) | settings.forced_steps

    return ExecutionContext(
        dry_run=dry_run,
        force=force,
        forced_steps=frozenset(forced),
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or settings.config or DEFAULT_CONFIG_PATH,
    )
