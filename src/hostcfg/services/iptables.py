"""Iptables/ip6tables ruleset compiler.

Turns the declarative firewall policy into a complete iptables-restore
file for one address family. The same compiler runs once per family over
the same accept/drop lists; addresses of the other family are filtered
out.

Layout of the generated filter table:
- default ACCEPT policies, helper chains declared
- loopback, tunnel and established traffic accepted, ICMP sent to ``icmp``
- ``icmp``, ``ratelimit``, ``loganddrop`` and ``logger`` chain bodies
- broadcast drop (IPv4), spoofed DHCP reply drop
- drop entries in ``inputdrop``, then INPUT jumps to ``inputdrop``
- accept entries, then raw appended lines
- log-and-drop catch-all, FORWARD dropped
Optional nat and mangle tables follow the filter table.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from hostcfg.core.config import FamilyConfig, FirewallConfig
from hostcfg.core.output import Console, console as default_console
from hostcfg.services.address_family import AddressFamily
from hostcfg.services.resolver import NetworkResolver, resolve_source
from hostcfg.services.rule_parser import RuleListEntry, parse_entries
from hostcfg.services.ruleset import BUILTIN_POLICY, Rule, RuleBlock, RuleFile


# Chains
INPUT = "INPUT"
FORWARD = "FORWARD"
OUTPUT = "OUTPUT"
RATELIMIT = "ratelimit"
LOGANDDROP = "loganddrop"
LOGGER = "logger"
ICMP = "icmp"
INPUTDROP = "inputdrop"

BUILTIN_CHAINS = (INPUT, FORWARD, OUTPUT)
HELPER_CHAINS = (RATELIMIT, LOGANDDROP, LOGGER, ICMP, INPUTDROP)

NAT_CHAINS = ("PREROUTING", "INPUT", "OUTPUT", "POSTROUTING")
MANGLE_CHAINS = ("PREROUTING", "INPUT", "FORWARD", "OUTPUT", "POSTROUTING")

# Rate limits
RATELIMIT_RATE = "20/second"
RATELIMIT_BURST = "40"
LOG_RATE = "5/minute"
LOG_BURST = "10"

TUNNEL_INTERFACES = "tun+"

RULESET_HEADER = "Generated by hostcfg; local changes will be overwritten"


@dataclass
class FirewallPolicy:
    """Parsed firewall lists for one address family step."""
    accept: list[RuleListEntry] = field(default_factory=list)
    drop: list[RuleListEntry] = field(default_factory=list)
    append: list[str] = field(default_factory=list)
    nat: Optional[list[str]] = None
    mangle: Optional[list[str]] = None
    dhcp_server: bool = False

    @classmethod
    def from_config(cls, firewall: FirewallConfig, family: FamilyConfig) -> "FirewallPolicy":
        """Parse the configuration lists.

        Raises:
            ConfigurationError: If any entry is malformed
        """
        return cls(
            accept=parse_entries(firewall.accept, "accept"),
            drop=parse_entries(firewall.drop, "drop"),
            append=list(family.append),
            nat=list(family.nat.append) if family.nat.enabled else None,
            mangle=list(family.mangle.append) if family.mangle.enabled else None,
            dhcp_server=firewall.dhcp_server,
        )


# =============================================================================
# Assembly phases
# =============================================================================

def filter_header() -> RuleBlock:
    """Table header, builtin policies and helper chain declarations."""
    block = RuleBlock().table("filter")
    for chain in BUILTIN_CHAINS:
        block.chain(chain, BUILTIN_POLICY)
    for chain in HELPER_CHAINS:
        block.chain(chain)
    return block


def bypass_rules(af: AddressFamily) -> RuleBlock:
    """Loopback, tunnels and established connections skip the policy."""
    return (
        RuleBlock()
        .rule(INPUT, "ACCEPT", matches=("-i", "lo"))
        .rule(INPUT, "ACCEPT", matches=("-i", TUNNEL_INTERFACES))
        .rule(INPUT, "ACCEPT", matches=("-m", "state", "--state", "ESTABLISHED,RELATED"))
        .rule(INPUT, ICMP, protocol=af.icmp_protocol)
    )


def icmp_chain(af: AddressFamily) -> RuleBlock:
    """Tag common ICMP types, rate limit, then accept."""
    block = RuleBlock()
    for icmp_type in af.icmp_types:
        # No target: the rule only counts and labels, packets fall through
        block.rule(
            ICMP,
            protocol=af.icmp_protocol,
            matches=(af.icmp_type_option, icmp_type),
            comment=icmp_type,
        )
    block.rule(ICMP, RATELIMIT)
    block.rule(ICMP, "ACCEPT")
    return block


def logging_chains(af: AddressFamily) -> RuleBlock:
    """ratelimit, loganddrop and logger chains."""
    return (
        RuleBlock()
        .rule(
            RATELIMIT, "RETURN",
            matches=("-m", "limit", "--limit", RATELIMIT_RATE, "--limit-burst", RATELIMIT_BURST),
        )
        .rule(RATELIMIT, LOGANDDROP)
        .rule(
            LOGANDDROP, LOGGER,
            matches=("-m", "limit", "--limit", LOG_RATE, "--limit-burst", LOG_BURST),
        )
        .rule(LOGANDDROP, "DROP")
        .rule(
            LOGGER, "LOG",
            target_options=(
                "--log-prefix", f'"{af.log_prefix}"',
                "--log-tcp-sequence", "--log-ip-options",
            ),
        )
        .rule(LOGGER, "RETURN")
    )


def broadcast_drop(af: AddressFamily) -> RuleBlock:
    """Drop broadcast traffic (IPv4 only)."""
    block = RuleBlock()
    if af.drop_broadcast:
        block.rule(
            INPUT, "DROP",
            matches=("-m", "addrtype", "--dst-type", "BROADCAST"),
            comment="drop broadcast",
        )
    return block


def dhcp_guard(dhcp_server: bool) -> RuleBlock:
    """Drop DHCP server replies unless this host is the DHCP server."""
    block = RuleBlock()
    if not dhcp_server:
        block.rule(
            INPUT, "DROP",
            protocol="udp",
            matches=("--sport", "bootps"),
            comment="spoofed DHCP server",
        )
    return block


def entry_rules(
    af: AddressFamily,
    entries: Sequence[RuleListEntry],
    chain: str,
    target: str,
    resolver: NetworkResolver,
    console: Console,
) -> RuleBlock:
    """Resolve entries and emit their rules for one family.

    Each entry that yields at least one rule is preceded by a
    ``# <TARGET> <port> from <source>`` annotation. Comment entries are
    copied verbatim for every family.
    """
    block = RuleBlock()

    for entry in entries:
        if entry.raw_comment:
            block.raw(entry.source)
            continue

        if not entry.any_source and not af.accepts(entry.source):
            console.debug(f"{af}: skipping {target} {entry.describe()} (other family)")
            continue

        resolution = resolve_source(entry.source, resolver, console)
        if resolution.skipped:
            continue

        if entry.any_source:
            sources: list[Optional[str]] = [None]
        else:
            sources = [a for a in resolution.addresses if af.accepts(a)]

        if not sources:
            console.debug(f"{af}: no {af} addresses for {entry.source}")
            continue

        block.annotate(f"{target} {entry.describe()}")
        for source in sources:
            block.add(Rule(
                chain,
                target,
                source=source,
                protocol=entry.rule_protocol,
                dport=entry.rule_port,
                comment=entry.comment,
            ))

    return block


def inputdrop_jump() -> RuleBlock:
    return RuleBlock().rule(INPUT, INPUTDROP)


def appended_lines(lines: Sequence[str]) -> RuleBlock:
    """Custom rules copied verbatim after the accept rules."""
    block = RuleBlock()
    for line in lines:
        block.raw(line)
    return block


def catch_all(af: AddressFamily) -> RuleBlock:
    """Log and drop everything left, then the fallback rejects."""
    return (
        RuleBlock()
        .rule(INPUT, LOGANDDROP)
        # Unreachable after loganddrop; kept in case that chain is emptied
        .rule(INPUT, "REJECT", protocol="tcp", target_options=("--reject-with", "tcp-reset"))
        .rule(INPUT, "REJECT", protocol="udp", target_options=("--reject-with", af.reject_udp_with))
        .rule(INPUT, "REJECT")
    )


def forward_drop() -> RuleBlock:
    """This host never routes."""
    return RuleBlock().rule(FORWARD, "DROP").commit()


def extra_table(name: str, chains: Sequence[str], lines: Sequence[str]) -> RuleBlock:
    """A nat or mangle table with its rules copied verbatim."""
    block = RuleBlock().table(name)
    for chain in chains:
        block.chain(chain, BUILTIN_POLICY)
    for line in lines:
        block.raw(line)
    return block.commit()


# =============================================================================
# Compiler
# =============================================================================

class RulesetCompiler:
    """Compile a FirewallPolicy into the ruleset of one address family."""

    def __init__(
        self,
        family: AddressFamily,
        resolver: NetworkResolver,
        console: Optional[Console] = None,
    ) -> None:
        """Initialize compiler.

        Args:
            family: Address family profile
            resolver: Naming service for symbolic sources
            console: Console for resolution messages
        """
        self.family = family
        self.resolver = resolver
        self.console = console or default_console

    def compile(self, policy: FirewallPolicy) -> RuleFile:
        """Build the full ruleset.

        Args:
            policy: Parsed firewall lists

        Returns:
            RuleFile for this family
        """
        af = self.family
        ruleset = RuleFile(family=af.family.value, header=RULESET_HEADER)

        ruleset.append(filter_header())
        ruleset.append(bypass_rules(af))
        ruleset.append(icmp_chain(af))
        ruleset.append(logging_chains(af))
        ruleset.append(broadcast_drop(af))
        ruleset.append(dhcp_guard(policy.dhcp_server))
        ruleset.append(entry_rules(af, policy.drop, INPUTDROP, "DROP", self.resolver, self.console))
        ruleset.append(inputdrop_jump())
        ruleset.append(entry_rules(af, policy.accept, INPUT, "ACCEPT", self.resolver, self.console))
        ruleset.append(appended_lines(policy.append))
        ruleset.append(catch_all(af))
        ruleset.append(forward_drop())

        if policy.nat is not None:
            ruleset.append(extra_table("nat", NAT_CHAINS, policy.nat))
        if policy.mangle is not None:
            ruleset.append(extra_table("mangle", MANGLE_CHAINS, policy.mangle))

        self.console.debug(
            f"{af}: compiled {len(ruleset.rules())} rules "
            f"({len(policy.drop)} drop, {len(policy.accept)} accept entries)"
        )
        return ruleset
