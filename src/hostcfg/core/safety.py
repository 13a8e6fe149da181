"""Safety framework for dangerous steps.

Provides:
- Danger level classification
- The force check consulted before a dangerous step applies its effect
"""

from enum import Enum, auto

from hostcfg.core.context import ExecutionContext


class DangerLevel(Enum):
    """Classification of operation danger levels."""
    SAFE = auto()       # Read-only operations, compiling, diffing
    DANGEROUS = auto()  # Changes live system state (firewall reloads)


# Steps whose default mode computes but does not apply
DANGEROUS_STEPS: dict[str, DangerLevel] = {
    "iptables": DangerLevel.DANGEROUS,
    "ip6tables": DangerLevel.DANGEROUS,
}


def is_dangerous(step: str) -> bool:
    """Check whether a step needs an explicit force to apply."""
    return DANGEROUS_STEPS.get(step, DangerLevel.SAFE) == DangerLevel.DANGEROUS


def may_apply(ctx: ExecutionContext, step: str) -> bool:
    """Decide whether a step may change the live system.

    Safe steps always may. Dangerous steps need ``--force`` or the step
    named in ``--force-step`` / HOSTCFG_FORCE.
    """
    if not is_dangerous(step):
        return True
    return ctx.is_forced(step)
