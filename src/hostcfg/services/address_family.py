"""Address family profiles and classification.

The IPv4 and IPv6 rulesets are compiled from the same policy lists by one
algorithm. Everything that differs between the two lives in an
AddressFamily profile: ICMP flavour, log prefix, reject codes, the
broadcast drop and which addresses belong to the other family.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from hostcfg.core.exceptions import ValidationError


class Family(str, Enum):
    """Address family."""
    IPV4 = "ipv4"
    IPV6 = "ipv6"


# Dotted quad, optionally with a prefix length or netmask
IPV4_PATTERN = re.compile(r"^\d{1,3}(\.\d{1,3}){3}(/\S+)?$")

# Two or more colon separated groups (covers "::" shorthand)
IPV6_PATTERN = re.compile(r"^[0-9A-Fa-f.]*:[0-9A-Fa-f.]*:[0-9A-Fa-f.:]*(/\d{1,3})?$")


def is_ipv4(address: str) -> bool:
    """Check if an address is written in IPv4 dotted-quad notation."""
    return bool(IPV4_PATTERN.match(address))


def is_ipv6(address: str) -> bool:
    """Check if an address is written in IPv6 colon notation."""
    return bool(IPV6_PATTERN.match(address))


def classify_address(address: str) -> Optional[Family]:
    """Classify an address by its notation.

    Returns:
        The family the address belongs to, or None for hostnames and
        anything else that both families accept.
    """
    if is_ipv4(address):
        return Family.IPV4
    if is_ipv6(address):
        return Family.IPV6
    return None


@dataclass(frozen=True)
class AddressFamily:
    """Everything the compiler needs to know about one address family."""
    family: Family
    step: str
    icmp_protocol: str
    icmp_type_option: str
    icmp_types: tuple[str, ...]
    log_prefix: str
    reject_udp_with: str
    drop_broadcast: bool
    is_foreign: Callable[[str], bool]

    def accepts(self, address: str) -> bool:
        """Check if an address may appear in this family's ruleset."""
        return not self.is_foreign(address)

    def __str__(self) -> str:
        return self.family.value


IPV4 = AddressFamily(
    family=Family.IPV4,
    step="iptables",
    icmp_protocol="icmp",
    icmp_type_option="--icmp-type",
    icmp_types=("echo-request", "echo-reply", "destination-unreachable", "time-exceeded"),
    log_prefix="iptables: ",
    reject_udp_with="icmp-port-unreachable",
    drop_broadcast=True,
    is_foreign=is_ipv6,
)

IPV6 = AddressFamily(
    family=Family.IPV6,
    step="ip6tables",
    icmp_protocol="ipv6-icmp",
    icmp_type_option="--icmpv6-type",
    icmp_types=("echo-request", "echo-reply", "destination-unreachable", "time-exceeded"),
    log_prefix="ip6tables: ",
    reject_udp_with="icmp6-port-unreachable",
    drop_broadcast=False,
    is_foreign=is_ipv4,
)

FAMILIES: dict[Family, AddressFamily] = {
    Family.IPV4: IPV4,
    Family.IPV6: IPV6,
}


def get_family(name: str) -> AddressFamily:
    """Look up a family profile by family name or step name.

    Raises:
        ValidationError: If the name is unknown
    """
    key = name.lower()
    for profile in FAMILIES.values():
        if key in (profile.family.value, profile.step):
            return profile
    valid = ", ".join(f"{p.family.value} ({p.step})" for p in FAMILIES.values())
    raise ValidationError(
        f"Unknown address family: {name}",
        hint=f"Valid families: {valid}",
    )
