"""Main CLI entry point using Typer.

This module defines the root CLI application and the config commands.
The firewall command group is registered from its submodule.
"""

from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console

from hostcfg import __version__
from hostcfg.core.context import create_context
from hostcfg.core.output import console as app_console
from hostcfg.core.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    get_example_config,
    init_config,
)
from hostcfg.core.exceptions import HostCfgError
from hostcfg.services.platform import detect_platform


# Create the main Typer app
app = typer.Typer(
    name="hostcfg",
    help="hostcfg - Declarative host configuration agent.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

from hostcfg.commands.firewall import app as firewall_app

app.add_typer(config_app, name="config")
app.add_typer(firewall_app, name="firewall")


# Type aliases for common options
ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite an existing configuration file.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"hostcfg version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """hostcfg - Declarative host configuration agent.

    Compiles the firewall policy in the host configuration into
    iptables and ip6tables rulesets and installs them.

    [bold]Features:[/bold]
    - One policy for IPv4 and IPv6
    - Changes are shown, and only installed when forced
    - Audit logging of all installs

    [bold]Examples:[/bold]
        hostcfg config init
        hostcfg firewall compile
        hostcfg firewall apply
        sudo hostcfg firewall apply --force-step iptables
    """
    pass


def handle_error(error: HostCfgError) -> None:
    """Handle a HostCfgError by printing formatted error and exiting."""
    app_console.error(error.message)

    if error.details:
        for detail in error.details:
            app_console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the loaded configuration and the detected platform.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print(f"[bold]Platform:[/bold] {detect_platform().value}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        forced = sorted(ctx.forced_steps)
        ctx.console.summary("Forced steps (HOSTCFG_FORCE)", {
            "steps": ", ".join(forced) if forced else "none",
        })

    except HostCfgError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with an example firewall policy.
    """
    ctx = create_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        if config_path.exists() and not force:
            ctx.console.error(f"Configuration file already exists: {config_path}")
            ctx.console.hint("Use --force to overwrite")
            raise typer.Exit(1)

        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.info("Edit the file, then set firewall.enabled to true.")
        ctx.console.hint("Preview the rules with: hostcfg firewall compile")

    except HostCfgError as e:
        handle_error(e)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration file.

    Checks that the configuration file exists, is valid YAML, all values
    pass validation and the accept/drop lists parse.
    """
    from hostcfg.services.iptables import FirewallPolicy

    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        # This will raise ConfigurationError if invalid
        app_config = AppConfig(config_path=ctx.config_path)
        firewall = app_config.firewall

        for step in ("iptables", "ip6tables"):
            FirewallPolicy.from_config(firewall, firewall.family(step))

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        # Check for settings that make the firewall steps do nothing
        warnings = []

        if not firewall.enabled:
            warnings.append("Firewall is disabled (firewall.enabled: false)")
        elif not (firewall.accept or firewall.drop):
            warnings.append("Firewall is enabled but the accept and drop lists are empty")

        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except HostCfgError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file."""
    ctx = create_context(no_color=no_color)
    ctx.console.out(get_example_config())


if __name__ == "__main__":
    app()
