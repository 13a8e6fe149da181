"""Structured ruleset model and iptables-restore serialization.

Rules are kept as records while the ruleset is assembled and only turned
into iptables-restore text by RuleFile.render().
"""

import re
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union


MAX_COMMENT_LENGTH = 256

BUILTIN_POLICY = "ACCEPT"
NO_POLICY = "-"


def sanitize_comment(comment: Optional[str]) -> Optional[str]:
    """Sanitize a comment for use with ``-m comment --comment``.

    Args:
        comment: Comment string to sanitize

    Returns:
        Sanitized comment or None
    """
    if not comment:
        return None

    # Remove newlines and control characters
    sanitized = re.sub(r'[\x00-\x1f\x7f]', ' ', comment)

    # iptables-restore has no escape for an embedded double quote
    sanitized = sanitized.replace('"', "'")

    if len(sanitized) > MAX_COMMENT_LENGTH:
        sanitized = sanitized[:MAX_COMMENT_LENGTH - 3] + "..."

    return sanitized.strip() or None


@dataclass(frozen=True)
class Rule:
    """One ``-A`` line of a ruleset.

    ``matches`` holds any further match tokens (interfaces, state,
    limits). A rule without a target only counts packets, which the
    icmp chain uses to tag message types.
    """
    chain: str
    target: Optional[str] = None
    source: Optional[str] = None
    protocol: Optional[str] = None
    dport: Optional[str] = None
    matches: tuple[str, ...] = ()
    target_options: tuple[str, ...] = ()
    comment: Optional[str] = None

    def to_args(self) -> list[str]:
        """Convert rule to iptables arguments (without the chain)."""
        args: list[str] = []

        if self.source:
            args.extend(["-s", self.source])

        if self.protocol:
            args.extend(["-p", self.protocol])

        if self.dport:
            args.extend(["--dport", self.dport])

        args.extend(self.matches)

        if self.target:
            args.extend(["-j", self.target])
            args.extend(self.target_options)

        comment = sanitize_comment(self.comment)
        if comment:
            args.extend(["-m", "comment", "--comment", f'"{comment}"'])

        return args

    def render(self) -> str:
        return " ".join(["-A", self.chain] + self.to_args())

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class TableHeader:
    name: str

    def render(self) -> str:
        return f"*{self.name}"


@dataclass(frozen=True)
class ChainDeclaration:
    name: str
    policy: str = NO_POLICY

    def render(self) -> str:
        return f":{self.name} {self.policy} [0:0]"


@dataclass(frozen=True)
class Annotation:
    """A ``#`` comment line."""
    text: str

    def render(self) -> str:
        text = self.text.replace("\n", " ")
        if text.startswith("#"):
            return text
        return f"# {text}"


@dataclass(frozen=True)
class RawLine:
    """A line copied into the ruleset verbatim."""
    text: str

    def render(self) -> str:
        return self.text.rstrip("\n")


@dataclass(frozen=True)
class Commit:
    def render(self) -> str:
        return "COMMIT"


Entry = Union[Rule, TableHeader, ChainDeclaration, Annotation, RawLine, Commit]


@dataclass
class RuleBlock:
    """Ordered builder for one part of a ruleset.

    Each assembly phase returns its own block; the compiler concatenates
    them into a RuleFile.
    """
    entries: list[Entry] = field(default_factory=list)

    def table(self, name: str) -> "RuleBlock":
        self.entries.append(TableHeader(name))
        return self

    def chain(self, name: str, policy: str = NO_POLICY) -> "RuleBlock":
        self.entries.append(ChainDeclaration(name, policy))
        return self

    def rule(self, chain: str, target: Optional[str] = None, **kwargs) -> "RuleBlock":
        self.entries.append(Rule(chain, target, **kwargs))
        return self

    def add(self, rule: Rule) -> "RuleBlock":
        self.entries.append(rule)
        return self

    def annotate(self, text: str) -> "RuleBlock":
        self.entries.append(Annotation(text))
        return self

    def raw(self, text: str) -> "RuleBlock":
        self.entries.append(RawLine(text))
        return self

    def commit(self) -> "RuleBlock":
        self.entries.append(Commit())
        return self

    def rules(self) -> list[Rule]:
        return [e for e in self.entries if isinstance(e, Rule)]

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class RuleFile:
    """The complete ordered ruleset for one address family."""
    family: str
    blocks: list[RuleBlock] = field(default_factory=list)
    header: Optional[str] = None

    def append(self, block: RuleBlock) -> None:
        self.blocks.append(block)

    def entries(self) -> Iterator[Entry]:
        for block in self.blocks:
            yield from block.entries

    def rules(self, chain: Optional[str] = None) -> list[Rule]:
        """All rules in file order, optionally only those of one chain."""
        return [
            e for e in self.entries()
            if isinstance(e, Rule) and (chain is None or e.chain == chain)
        ]

    def tables(self) -> list[str]:
        return [e.name for e in self.entries() if isinstance(e, TableHeader)]

    def render(self) -> str:
        """Serialize to iptables-restore format."""
        lines = []
        if self.header:
            lines.append(Annotation(self.header).render())
        lines.extend(entry.render() for entry in self.entries())
        return "\n".join(lines) + "\n"
