"""Firewall commands.

Compile the iptables/ip6tables rulesets from the host configuration,
show how they differ from the installed rules, and apply them. Applying
is a dangerous step: without --force-step (or --force) the changes are
only shown.
"""

import os
from pathlib import Path
from typing import Annotated, Optional

import typer

from hostcfg.core import (
    HostCfgError,
    console,
    ExecutionContext,
    create_context,
    CommandExecutor,
)
from hostcfg.services.address_family import FAMILIES, get_family
from hostcfg.services.firewall_step import StepOutcome, build_firewall_steps
from hostcfg.services.iptables import FirewallPolicy, RulesetCompiler
from hostcfg.services.resolver import StaticResolver, resolve_source


app = typer.Typer(
    name="firewall",
    help="Compile and apply iptables/ip6tables rulesets.",
    no_args_is_help=True,
)


ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to configuration file"),
]
VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
]
QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only show warnings and errors"),
]
NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output"),
]


def _handle_error(error: HostCfgError) -> None:
    """Handle a HostCfgError by printing formatted error and exiting."""
    console.error(error.message)

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def _selected_families(family: str) -> list:
    if family == "all":
        return list(FAMILIES.values())
    return [get_family(family)]


# =============================================================================
# Compile Command
# =============================================================================

@app.command("compile")
def firewall_compile(
    family: Annotated[
        str,
        typer.Option("--family", "-f", help="ipv4, ipv6 or all"),
    ] = "all",
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Print the compiled ruleset.

    Compiles regardless of the enable switches; nothing is installed.

    [bold]Examples:[/bold]

        hostcfg firewall compile
        hostcfg firewall compile --family ipv6
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        firewall = ctx.config.firewall
        resolver = StaticResolver(ctx.config.networks)

        for af in _selected_families(family):
            policy = FirewallPolicy.from_config(firewall, firewall.family(af.step))
            ruleset = RulesetCompiler(af, resolver, ctx.console).compile(policy)
            ctx.console.out(ruleset.render())

    except HostCfgError as e:
        _handle_error(e)


# =============================================================================
# Diff Command
# =============================================================================

@app.command("diff")
def firewall_diff(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show how the compiled rulesets differ from the installed ones.

    Exits with status 1 when any ruleset would change.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        pending = False
        for step in build_firewall_steps(ctx, CommandExecutor(ctx)):
            result = step.preview()

            if result.outcome == StepOutcome.NOT_RUN:
                ctx.console.info(f"{step.name}: not enabled")
            elif result.outcome == StepOutcome.UNSUPPORTED:
                ctx.console.warn(f"{step.name}: no install target on this platform")
            elif result.outcome == StepOutcome.UNCHANGED:
                ctx.console.info(f"{step.name}: no change")
            else:
                pending = True
                ctx.console.diff(result.diff, title=f"{step.name}: would change")

        if pending:
            raise typer.Exit(1)

    except HostCfgError as e:
        _handle_error(e)


# =============================================================================
# Resolve Command
# =============================================================================

@app.command("resolve")
def firewall_resolve(
    name: Annotated[str, typer.Argument(help="Source name as used in accept/drop lists")],
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show what a source name resolves to for each address family."""
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        resolution = resolve_source(name, StaticResolver(ctx.config.networks), ctx.console)

        rows = []
        for af in FAMILIES.values():
            if resolution.addresses:
                addresses = [a for a in resolution.addresses if af.accepts(a)]
                rows.append([af.step, ", ".join(addresses) or "[dim](none)[/dim]"])
            else:
                rows.append([af.step, "[dim](any)[/dim]" if not resolution.skipped else "[dim](skipped)[/dim]"])

        ctx.console.table(
            f"{name} ({resolution.status.value})",
            ["Step", "Addresses"],
            rows,
        )

    except HostCfgError as e:
        _handle_error(e)


# =============================================================================
# Apply Command
# =============================================================================

@app.command("apply")
def firewall_apply(
    force_step: Annotated[
        Optional[list[str]],
        typer.Option(
            "--force-step",
            help="Install and reload this dangerous step (iptables, ip6tables). Repeatable.",
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Install and reload every firewall step"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done"),
    ] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Compile the rulesets and install the ones that changed.

    Without --force-step or --force only the differences are shown.
    HOSTCFG_FORCE=iptables,ip6tables has the same effect as --force-step.

    [bold]Examples:[/bold]

        hostcfg firewall apply
        sudo hostcfg firewall apply --force-step iptables
        sudo hostcfg firewall apply --force
    """
    ctx = create_context(
        dry_run=dry_run,
        force=force,
        force_steps=force_step,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )
    _check_root(ctx)

    try:
        steps = build_firewall_steps(ctx, CommandExecutor(ctx))

        # Parse the lists for both families before anything is installed
        for step in steps:
            if step.should_run():
                step.policy()

        results = [step.run() for step in steps]

    except HostCfgError as e:
        _handle_error(e)
        return

    _report(ctx, results)

    if any(r.outcome == StepOutcome.RELOAD_FAILED for r in results):
        raise typer.Exit(1)


def _check_root(ctx: ExecutionContext) -> None:
    """Forced installs write to /etc and reload rules: require root."""
    forced = ctx.force or bool(ctx.forced_steps)
    if forced and not ctx.dry_run and os.geteuid() != 0:
        ctx.console.error("Installing firewall rules requires root privileges")
        ctx.console.hint("Run with: sudo hostcfg firewall apply ...")
        raise typer.Exit(6)


def _report(ctx: ExecutionContext, results: list) -> None:
    if ctx.is_quiet:
        return
    ctx.console.summary("Firewall", {r.step: r.outcome.value for r in results})
