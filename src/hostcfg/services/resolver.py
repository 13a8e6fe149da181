"""Source name resolution for firewall rule entries.

The compiler only needs ``resolve(name) -> list of addresses`` from a
resolver. StaticResolver answers from the ``networks`` map of the host
configuration; any other naming service can be plugged in by providing
the same method.

Resolution policy:
- ``any`` is never resolved, the rule gets no source clause
- names that resolve use every returned address
- unresolved names starting with an uppercase letter are groups that are
  missing: warn and skip the entry
- other unresolved names are used verbatim as hostnames
"""

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Protocol, Sequence

from hostcfg.core.output import Console, console as default_console
from hostcfg.services.rule_parser import ANY


class NetworkResolver(Protocol):
    """Anything that can expand a name into addresses."""

    def resolve(self, name: str) -> list[str]:
        ...


def is_literal_address(value: str) -> bool:
    """Check if a value is an IP address or network in CIDR notation."""
    try:
        ipaddress.ip_network(value, strict=False)
        return True
    except ValueError:
        return False


def is_symbolic_name(name: str) -> bool:
    """Group and network names start with an uppercase letter."""
    return name[:1].isupper()


class StaticResolver:
    """Resolve names from a name -> addresses mapping.

    Members of a network may themselves be names from the same map; they
    are expanded recursively. Literal addresses resolve to themselves.
    """

    def __init__(self, networks: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        self.networks = dict(networks or {})

    def resolve(self, name: str) -> list[str]:
        return self._expand(name, set())

    def _expand(self, name: str, seen: set[str]) -> list[str]:
        if name in self.networks:
            if name in seen:
                return []
            seen.add(name)
            addresses: list[str] = []
            for member in self.networks[name]:
                addresses.extend(self._expand(member.strip(), seen))
            return list(dict.fromkeys(addresses))

        if is_literal_address(name):
            return [name]

        # Unknown member of a network: keep hostnames, drop unknown groups
        if seen and not is_symbolic_name(name):
            return [name]
        return []


class ResolutionStatus(str, Enum):
    """How a source was turned into addresses."""
    ANY = "any"
    RESOLVED = "resolved"
    HOSTNAME = "hostname"
    UNRESOLVED = "unresolved"


@dataclass
class Resolution:
    """Result of resolving one source entry."""
    name: str
    status: ResolutionStatus
    addresses: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.status == ResolutionStatus.UNRESOLVED


def resolve_source(
    name: str,
    resolver: NetworkResolver,
    console: Optional[Console] = None,
) -> Resolution:
    """Apply the resolution policy to one source.

    Args:
        name: Source from a rule entry
        resolver: Naming service
        console: Console for resolution messages

    Returns:
        Resolution with the addresses to emit rules for. For ``any`` the
        address list is empty and the rule carries no source clause.
    """
    out = console or default_console

    if name == ANY:
        return Resolution(name=name, status=ResolutionStatus.ANY)

    addresses = list(dict.fromkeys(resolver.resolve(name)))
    if addresses:
        out.verbose(f"Resolved {name}: {', '.join(addresses)}")
        return Resolution(name=name, status=ResolutionStatus.RESOLVED, addresses=addresses)

    if is_symbolic_name(name):
        out.warn(f"Could not resolve '{name}' to any address, skipping rule")
        return Resolution(name=name, status=ResolutionStatus.UNRESOLVED)

    out.verbose(f"No addresses for {name}, using it as a hostname")
    return Resolution(name=name, status=ResolutionStatus.HOSTNAME, addresses=[name])
