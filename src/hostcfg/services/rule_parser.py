"""Parser for the declarative accept/drop lists.

A list alternates source and port entries::

    accept:
      - "# office"          # comment line, takes no port
      - Office              # symbolic name, resolved later
      - "22 # ssh"          # port with trailing comment
      - any
      - "53:udp"            # explicit protocol

Sources: ``any``, a literal address or network, a symbolic name, a bare
hostname, or a ``#`` comment that is copied into the ruleset verbatim.
Ports: ``any`` or a port/service name, optionally suffixed with ``:udp``
or ``:tcp`` and a trailing ``# comment``.
"""

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from hostcfg.core.exceptions import ConfigurationError


ANY = "any"
DEFAULT_PROTOCOL = "tcp"

# Trailing "# comment" on a port entry
PORT_COMMENT_PATTERN = re.compile(r"\s*#\s*(.*?)\s*$")

# ":udp" / ":tcp" protocol suffix on a port entry
PROTOCOL_SUFFIX_PATTERN = re.compile(r":(udp|tcp)$", re.IGNORECASE)


@dataclass(frozen=True)
class RuleListEntry:
    """One parsed entry of an accept or drop list."""
    source: str
    port: str = ANY
    protocol: str = DEFAULT_PROTOCOL
    explicit_protocol: bool = False
    comment: Optional[str] = None
    raw_comment: bool = False

    @property
    def any_source(self) -> bool:
        return self.source == ANY

    @property
    def any_port(self) -> bool:
        return self.port == ANY

    @property
    def rule_protocol(self) -> Optional[str]:
        """Protocol to match on, or None when the rule covers all of them."""
        if self.any_port and not self.explicit_protocol:
            return None
        return self.protocol

    @property
    def rule_port(self) -> Optional[str]:
        return None if self.any_port else self.port

    def describe(self) -> str:
        """Short text used in ruleset annotations."""
        return f"{self.port} from {self.source}"

    def __str__(self) -> str:
        if self.raw_comment:
            return self.source
        return self.describe()


def parse_port_spec(spec: str) -> tuple[str, str, bool, Optional[str]]:
    """Split a port entry into port, protocol and comment.

    Args:
        spec: Port entry such as ``"53:udp # dns"``

    Returns:
        Tuple of (port, protocol, explicit_protocol, comment)

    Raises:
        ConfigurationError: If no port remains after stripping
    """
    comment = None
    port = spec

    match = PORT_COMMENT_PATTERN.search(spec)
    if match:
        comment = match.group(1) or None
        port = spec[:match.start()]
    port = port.strip()

    protocol = DEFAULT_PROTOCOL
    explicit = False
    match = PROTOCOL_SUFFIX_PATTERN.search(port)
    if match:
        protocol = match.group(1).lower()
        explicit = True
        port = port[:match.start()].strip()

    if not port:
        raise ConfigurationError(
            f"Empty port in rule entry: {spec!r}",
            hint="Use a port, a service name or 'any'",
        )

    return port, protocol, explicit, comment


def parse_entries(values: Sequence[str], list_name: str = "accept") -> list[RuleListEntry]:
    """Parse a flat source/port list into entries.

    A ``#`` source is a comment entry and does not consume a port, so the
    value after it is the next source.

    Args:
        values: Flat list of source and port strings
        list_name: Name of the list, used in error messages

    Returns:
        Parsed entries in list order

    Raises:
        ConfigurationError: If a pair matches any source on any port, or
            a source has no port
    """
    entries: list[RuleListEntry] = []
    i = 0

    while i < len(values):
        source = values[i].strip()

        if source.startswith("#"):
            entries.append(RuleListEntry(source=source, port="", raw_comment=True))
            i += 1
            continue

        if not source:
            raise ConfigurationError(
                f"Empty source at position {i + 1} of the {list_name} list",
            )

        if i + 1 >= len(values):
            raise ConfigurationError(
                f"Source '{source}' in the {list_name} list has no port",
                hint="List entries alternate source and port; use 'any' for all ports",
            )

        port, protocol, explicit, comment = parse_port_spec(values[i + 1])

        if source == ANY and port == ANY:
            raise ConfigurationError(
                f"Rule in the {list_name} list matches any source on any port",
                hint="Restrict the source or the port; a rule matching everything is not allowed",
                details=[f"Entry {i + 1}: {values[i]!r} {values[i + 1]!r}"],
            )

        entries.append(RuleListEntry(
            source=source,
            port=port,
            protocol=protocol,
            explicit_protocol=explicit,
            comment=comment,
        ))
        i += 2

    return entries
