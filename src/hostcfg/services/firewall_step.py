"""The iptables and ip6tables configuration steps.

Each step compiles the ruleset for its family and hands it to the safety
gate:
- the step only runs when the firewall and the family are enabled and at
  least one of accept/drop/append has entries
- an installed file identical to the new ruleset means nothing to do
- otherwise the change is shown, and only a forced step writes the file
  and reloads the rules
"""

import difflib
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from hostcfg.core.audit import AuditEventType, AuditLogger, AuditResult, get_audit_logger
from hostcfg.core.context import ExecutionContext
from hostcfg.core.exceptions import ExecutionError, FirewallError
from hostcfg.core.executor import CommandExecutor
from hostcfg.core.safety import may_apply
from hostcfg.services.address_family import FAMILIES, AddressFamily
from hostcfg.services.iptables import FirewallPolicy, RulesetCompiler
from hostcfg.services.platform import (
    PERSISTENCE_PACKAGES,
    InstallTarget,
    PlatformFamily,
    detect_platform,
    get_install_target,
)
from hostcfg.services.resolver import NetworkResolver, StaticResolver
from hostcfg.services.ruleset import RuleFile


class StepOutcome(str, Enum):
    """What a firewall step did."""
    NOT_RUN = "not_run"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"
    INSTALLED = "installed"
    RELOAD_FAILED = "reload_failed"
    UNSUPPORTED = "unsupported"


@dataclass
class StepResult:
    """Result of running a firewall step."""
    step: str
    outcome: StepOutcome
    ruleset: Optional[str] = None
    diff: str = ""
    target: Optional[InstallTarget] = None

    @property
    def changed(self) -> bool:
        return self.outcome == StepOutcome.INSTALLED

    @property
    def pending(self) -> bool:
        """True when the installed rules differ and were left alone."""
        return self.outcome in (StepOutcome.SKIPPED, StepOutcome.DRY_RUN)


def ruleset_diff(current: str, new: str, path: str = "ruleset") -> str:
    """Unified diff between the installed and the new ruleset."""
    return "".join(difflib.unified_diff(
        current.splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"{path} (installed)",
        tofile=f"{path} (new)",
    ))


class FirewallStep:
    """Compile and, when allowed, install one family's ruleset."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        family: AddressFamily,
        resolver: NetworkResolver,
        target: Optional[InstallTarget],
        *,
        platform: PlatformFamily = PlatformFamily.UNKNOWN,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        """Initialize firewall step.

        Args:
            ctx: Execution context
            executor: Command executor
            family: Address family profile
            resolver: Naming service for symbolic sources
            target: Install path and reload command (None if unsupported)
            platform: Detected platform family
            audit: Audit logger (global logger if None)
        """
        self.ctx = ctx
        self.executor = executor
        self.family = family
        self.resolver = resolver
        self.target = target
        self.platform = platform
        self._audit = audit

    @property
    def name(self) -> str:
        return self.family.step

    @property
    def audit(self) -> AuditLogger:
        if self._audit is None:
            self._audit = get_audit_logger()
        return self._audit

    def should_run(self) -> bool:
        """Check the firewall and family switches and that there is policy."""
        firewall = self.ctx.config.firewall
        family = firewall.family(self.name)

        if not firewall.enabled:
            self.ctx.console.verbose(f"{self.name}: firewall disabled, skipping")
            return False
        if not family.enabled:
            self.ctx.console.verbose(f"{self.name}: disabled, skipping")
            return False
        if not (firewall.accept or firewall.drop or family.append):
            self.ctx.console.verbose(f"{self.name}: no accept, drop or append rules, skipping")
            return False
        return True

    def policy(self) -> FirewallPolicy:
        """Parse this step's lists from the current configuration.

        Raises:
            ConfigurationError: If the accept or drop list is invalid
        """
        firewall = self.ctx.config.firewall
        return FirewallPolicy.from_config(firewall, firewall.family(self.name))

    def compile(self) -> RuleFile:
        """Compile the ruleset from the current configuration."""
        compiler = RulesetCompiler(self.family, self.resolver, self.ctx.console)
        return compiler.compile(self.policy())

    def read_installed(self) -> str:
        """Read the currently installed ruleset ("" if there is none).

        Raises:
            FirewallError: If the file exists but cannot be read
        """
        if self.target is None or not self.target.path.exists():
            return ""
        try:
            return self.target.path.read_text()
        except OSError as e:
            raise FirewallError(
                f"Cannot read installed ruleset: {self.target.path}",
                family=self.family.family.value,
                path=str(self.target.path),
                details=[str(e)],
                hint="Run as root",
            ) from e

    def preview(self) -> StepResult:
        """Compile and compare with the installed ruleset, changing nothing.

        Returns:
            StepResult with outcome NOT_RUN, UNSUPPORTED, UNCHANGED or
            SKIPPED (differs, diff attached)
        """
        if not self.should_run():
            return StepResult(self.name, StepOutcome.NOT_RUN)

        text = self.compile().render()

        if self.target is None:
            return StepResult(self.name, StepOutcome.UNSUPPORTED, ruleset=text)

        current = self.read_installed()
        if current == text:
            return StepResult(self.name, StepOutcome.UNCHANGED, ruleset=text, target=self.target)

        diff = ruleset_diff(current, text, str(self.target.path))
        return StepResult(self.name, StepOutcome.SKIPPED, ruleset=text, diff=diff, target=self.target)

    def run(self) -> StepResult:
        """Run the step through the safety gate."""
        preview = self.preview()
        if preview.outcome == StepOutcome.NOT_RUN:
            return preview

        text = preview.ruleset or ""
        self.audit.log_operation(
            AuditEventType.FIREWALL_COMPILE, AuditResult.SUCCESS, self.name,
            parameters={"lines": text.count("\n")},
        )

        if preview.outcome == StepOutcome.UNSUPPORTED:
            self.ctx.console.warn(
                f"{self.name}: platform '{self.platform.value}' is not supported for installation"
            )
            self.ctx.console.hint(
                f"Set firewall.{self.name}.rules_path and reload_command to install anyway"
            )
            return preview

        assert self.target is not None
        if preview.outcome == StepOutcome.UNCHANGED:
            self.ctx.console.info(f"{self.name}: {self.target.path} is up to date, no change")
            self.audit.log_operation(
                AuditEventType.FIREWALL_INSTALL, AuditResult.UNCHANGED, self.name,
            )
            return preview

        diff = preview.diff

        if not may_apply(self.ctx, self.name):
            return self._skip(text, diff)

        if self.ctx.dry_run:
            self.ctx.console.diff(diff, title=f"{self.name}: changes")
            self.ctx.console.dry_run_msg(f"install {self.target.path} and reload {self.name}")
            self.audit.log_operation(
                AuditEventType.FIREWALL_INSTALL, AuditResult.DRY_RUN, self.name,
            )
            return StepResult(self.name, StepOutcome.DRY_RUN, ruleset=text, diff=diff, target=self.target)

        return self._install(text, diff)

    def _skip(self, text: str, diff: str) -> StepResult:
        """Report what would change without touching the system."""
        assert self.target is not None
        self.ctx.console.warn(
            f"{self.name}: ruleset differs from {self.target.path}; "
            "not installing because this step is dangerous"
        )
        self.ctx.console.diff(diff, title=f"{self.name}: would change")
        self.ctx.console.hint(f"Use --force-step {self.name} to install and reload")
        self.audit.log_operation(
            AuditEventType.FIREWALL_INSTALL, AuditResult.BLOCKED, self.name,
            message="not forced",
        )
        return StepResult(self.name, StepOutcome.SKIPPED, ruleset=text, diff=diff, target=self.target)

    def _install(self, text: str, diff: str) -> StepResult:
        """Write the ruleset and reload it."""
        assert self.target is not None
        self.ctx.console.verbose(diff)

        try:
            self.executor.write_file(
                self.target.path,
                text,
                description=f"Install {self.name} ruleset to {self.target.path}",
            )
        except OSError as e:
            self.audit.log_operation(
                AuditEventType.FIREWALL_INSTALL, AuditResult.FAILURE, self.name,
                parameters={"path": str(self.target.path)}, error=str(e),
            )
            raise FirewallError(
                f"Cannot write ruleset: {self.target.path}",
                family=self.family.family.value,
                path=str(self.target.path),
                details=[str(e)],
                hint="Run as root",
            ) from e
        self.audit.log_operation(
            AuditEventType.FIREWALL_INSTALL, AuditResult.SUCCESS, self.name,
            parameters={"path": str(self.target.path)},
        )

        try:
            result = self.executor.run(
                list(self.target.reload_command),
                description=f"Reload {self.name} rules",
                check=False,
            )
            error = None if result.success else (result.stderr.strip() or f"exit {result.return_code}")
        except ExecutionError as e:
            error = e.message

        if error is not None:
            self.ctx.console.error(f"{self.name}: ruleset installed but reload failed: {error}")
            package = PERSISTENCE_PACKAGES.get(self.platform)
            if package:
                self.ctx.console.hint(f"Check that {package} is installed")
            self.audit.log_operation(
                AuditEventType.FIREWALL_RELOAD, AuditResult.FAILURE, self.name,
                error=error,
            )
            return StepResult(self.name, StepOutcome.RELOAD_FAILED, ruleset=text, diff=diff, target=self.target)

        self.ctx.console.success(f"{self.name}: installed {self.target.path} and reloaded rules")
        self.audit.log_operation(
            AuditEventType.FIREWALL_RELOAD, AuditResult.SUCCESS, self.name,
        )
        return StepResult(self.name, StepOutcome.INSTALLED, ruleset=text, diff=diff, target=self.target)


def build_firewall_steps(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    *,
    resolver: Optional[NetworkResolver] = None,
    platform: Optional[PlatformFamily] = None,
    audit: Optional[AuditLogger] = None,
) -> list[FirewallStep]:
    """Create the iptables and ip6tables steps for this host.

    Args:
        ctx: Execution context
        executor: Command executor
        resolver: Naming service (networks from the configuration if None)
        platform: Platform family (detected from /etc/os-release if None)
        audit: Audit logger

    Returns:
        Steps in order: iptables, ip6tables
    """
    if platform is None:
        platform = detect_platform()
    if resolver is None:
        resolver = StaticResolver(ctx.config.networks)

    steps = []
    for family in FAMILIES.values():
        family_config = ctx.config.firewall.family(family.step)
        steps.append(FirewallStep(
            ctx,
            executor,
            family,
            resolver,
            get_install_target(family.step, platform, family_config),
            platform=platform,
            audit=audit,
        ))
    return steps
