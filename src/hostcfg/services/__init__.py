"""Firewall compilation and installation services."""

from hostcfg.services.firewall_step import FirewallStep, StepOutcome, build_firewall_steps
from hostcfg.services.iptables import FirewallPolicy, RulesetCompiler
from hostcfg.services.resolver import StaticResolver

__all__ = [
    "FirewallStep",
    "StepOutcome",
    "build_firewall_steps",
    "FirewallPolicy",
    "RulesetCompiler",
    "StaticResolver",
]
