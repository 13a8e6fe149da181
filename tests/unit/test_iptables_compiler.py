"""Unit tests for the iptables/ip6tables ruleset compiler."""

from unittest.mock import Mock

import pytest

from hostcfg.core.config import FamilyConfig, FirewallConfig, TableConfig
from hostcfg.core.exceptions import ConfigurationError
from hostcfg.services.address_family import IPV4, IPV6
from hostcfg.services.iptables import (
    HELPER_CHAINS,
    INPUTDROP,
    RULESET_HEADER,
    FirewallPolicy,
    RulesetCompiler,
    catch_all,
    icmp_chain,
)
from hostcfg.services.resolver import StaticResolver


def compile_for(af, firewall, networks=None, console=None):
    policy = FirewallPolicy.from_config(firewall, firewall.family(af.step))
    compiler = RulesetCompiler(af, StaticResolver(networks or {}), console or Mock())
    return compiler.compile(policy)


def lines_of(ruleset):
    return ruleset.render().splitlines()


class TestFirewallPolicy:
    """Tests for FirewallPolicy.from_config."""

    def test_parses_lists(self):
        firewall = FirewallConfig(accept=["any", "22"], drop=["10.0.0.1", "any"])
        policy = FirewallPolicy.from_config(firewall, firewall.iptables)

        assert len(policy.accept) == 1
        assert len(policy.drop) == 1
        assert policy.nat is None
        assert policy.mangle is None

    def test_enabled_tables(self):
        family = FamilyConfig(nat=TableConfig(enabled=True, append=["-A POSTROUTING -j MASQUERADE"]))
        policy = FirewallPolicy.from_config(FirewallConfig(), family)

        assert policy.nat == ["-A POSTROUTING -j MASQUERADE"]
        assert policy.mangle is None

    def test_invalid_list_raises(self):
        with pytest.raises(ConfigurationError):
            FirewallPolicy.from_config(FirewallConfig(accept=["any", "any"]), FamilyConfig())


class TestAcceptAndDropRules:
    """Tests for the rules generated from the accept and drop lists."""

    def test_accept_with_resolved_name_and_any(self):
        """Resolved names get -s, any gets no source clause."""
        firewall = FirewallConfig(accept=["home", "22 # ssh", "any", "80"])
        lines = lines_of(compile_for(IPV4, firewall, {"home": ["10.0.0.5"]}))

        assert '-A INPUT -s 10.0.0.5 -p tcp --dport 22 -j ACCEPT -m comment --comment "ssh"' in lines
        assert "-A INPUT -p tcp --dport 80 -j ACCEPT" in lines

    def test_annotation_precedes_rules(self):
        firewall = FirewallConfig(accept=["home", "22 # ssh"])
        lines = lines_of(compile_for(IPV4, firewall, {"home": ["10.0.0.5"]}))

        index = lines.index("# ACCEPT 22 from home")
        assert lines[index + 1].startswith("-A INPUT -s 10.0.0.5")

    def test_drop_filtered_by_family(self):
        """IPv4 addresses only appear in the IPv4 ruleset."""
        firewall = FirewallConfig(drop=["192.168.1.10", "53:udp"])

        v4 = compile_for(IPV4, firewall)
        v6 = compile_for(IPV6, firewall)

        v4_drops = [r for r in v4.rules(INPUTDROP)]
        assert [r.render() for r in v4_drops] == ["-A inputdrop -s 192.168.1.10 -p udp --dport 53 -j DROP"]
        assert v6.rules(INPUTDROP) == []
        assert "192.168.1.10" not in v6.render()

    def test_ipv6_address_only_in_ipv6(self):
        firewall = FirewallConfig(accept=["2001:db8::/32", "443"])

        assert "2001:db8::/32" not in compile_for(IPV4, firewall).render()
        assert "-A INPUT -s 2001:db8::/32 -p tcp --dport 443 -j ACCEPT" in lines_of(compile_for(IPV6, firewall))

    def test_mixed_network_split_by_family(self):
        networks = {"Office": ["10.1.0.0/16", "2001:db8:1::/48"]}
        firewall = FirewallConfig(accept=["Office", "22"])

        v4 = compile_for(IPV4, firewall, networks).rules("INPUT")
        v6 = compile_for(IPV6, firewall, networks).rules("INPUT")

        assert [r.source for r in v4 if r.dport == "22"] == ["10.1.0.0/16"]
        assert [r.source for r in v6 if r.dport == "22"] == ["2001:db8:1::/48"]

    def test_all_resolved_addresses_used(self):
        networks = {"Web": ["10.0.0.1", "10.0.0.2", "10.0.0.3"]}
        firewall = FirewallConfig(accept=["Web", "80"])

        rules = [r for r in compile_for(IPV4, firewall, networks).rules("INPUT") if r.dport == "80"]
        assert [r.source for r in rules] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]

    def test_unresolved_group_skipped_with_warning(self):
        """An unknown group is skipped and later entries still compile."""
        console = Mock()
        firewall = FirewallConfig(accept=["UnknownGroup", "80", "any", "443"])

        ruleset = compile_for(IPV4, firewall, console=console)

        console.warn.assert_called()
        assert not [r for r in ruleset.rules() if r.dport == "80"]
        assert "# ACCEPT 80 from UnknownGroup" not in lines_of(ruleset)
        assert "-A INPUT -p tcp --dport 443 -j ACCEPT" in lines_of(ruleset)

    def test_unresolved_hostname_passed_through(self):
        firewall = FirewallConfig(accept=["backup.example.com", "873"])

        for af in (IPV4, IPV6):
            assert "-A INPUT -s backup.example.com -p tcp --dport 873 -j ACCEPT" in lines_of(compile_for(af, firewall))

    def test_any_port_has_no_protocol(self):
        firewall = FirewallConfig(accept=["10.0.0.1", "any"])
        assert "-A INPUT -s 10.0.0.1 -j ACCEPT" in lines_of(compile_for(IPV4, firewall))

    def test_any_port_with_protocol(self):
        firewall = FirewallConfig(accept=["10.0.0.1", "any:udp"])
        assert "-A INPUT -s 10.0.0.1 -p udp -j ACCEPT" in lines_of(compile_for(IPV4, firewall))

    def test_comment_entries_copied_to_both_families(self):
        firewall = FirewallConfig(accept=["# monitoring", "any", "9100"])

        for af in (IPV4, IPV6):
            lines = lines_of(compile_for(af, firewall))
            index = lines.index("# monitoring")
            assert lines[index + 1] == "# ACCEPT 9100 from any"


class TestRulesetLayout:
    """Tests for the order and skeleton of the generated ruleset."""

    def test_header_and_commit(self):
        lines = lines_of(compile_for(IPV4, FirewallConfig(accept=["any", "22"])))

        assert lines[0] == f"# {RULESET_HEADER}"
        assert lines[1] == "*filter"
        assert lines[-1] == "COMMIT"

    def test_chain_declarations(self):
        lines = lines_of(compile_for(IPV4, FirewallConfig()))

        for chain in ("INPUT", "FORWARD", "OUTPUT"):
            assert f":{chain} ACCEPT [0:0]" in lines
        for chain in HELPER_CHAINS:
            assert f":{chain} - [0:0]" in lines

    def test_phase_order(self):
        """Drops, the inputdrop jump, accepts, appended lines, then the catch-all."""
        family = FamilyConfig(append=["-A INPUT -p tcp --dport 8080 -j ACCEPT"])
        firewall = FirewallConfig(
            accept=["any", "22"],
            drop=["10.9.9.9", "any"],
            iptables=family,
        )
        lines = lines_of(compile_for(IPV4, firewall))

        order = [
            "-A INPUT -i lo -j ACCEPT",
            "-A INPUT -p icmp -j icmp",
            "-A inputdrop -s 10.9.9.9 -j DROP",
            "-A INPUT -j inputdrop",
            "-A INPUT -p tcp --dport 22 -j ACCEPT",
            "-A INPUT -p tcp --dport 8080 -j ACCEPT",
            "-A INPUT -j loganddrop",
            "-A FORWARD -j DROP",
        ]
        positions = [lines.index(line) for line in order]
        assert positions == sorted(positions)

    def test_bypass_rules(self):
        lines = lines_of(compile_for(IPV6, FirewallConfig()))

        assert "-A INPUT -i lo -j ACCEPT" in lines
        assert "-A INPUT -i tun+ -j ACCEPT" in lines
        assert "-A INPUT -m state --state ESTABLISHED,RELATED -j ACCEPT" in lines
        assert "-A INPUT -p ipv6-icmp -j icmp" in lines

    def test_broadcast_drop_ipv4_only(self):
        broadcast = '-A INPUT -m addrtype --dst-type BROADCAST -j DROP -m comment --comment "drop broadcast"'

        assert broadcast in lines_of(compile_for(IPV4, FirewallConfig()))
        assert "BROADCAST" not in compile_for(IPV6, FirewallConfig()).render()

    def test_dhcp_guard(self):
        guard = "-A INPUT -p udp --sport bootps -j DROP"

        assert any(line.startswith(guard) for line in lines_of(compile_for(IPV4, FirewallConfig())))
        assert "bootps" not in compile_for(IPV4, FirewallConfig(dhcp_server=True)).render()

    def test_log_prefix_per_family(self):
        assert '--log-prefix "iptables: "' in compile_for(IPV4, FirewallConfig()).render()
        assert '--log-prefix "ip6tables: "' in compile_for(IPV6, FirewallConfig()).render()

    def test_nat_and_mangle_tables(self):
        family = FamilyConfig(
            nat=TableConfig(enabled=True, append=["-A POSTROUTING -o eth0 -j MASQUERADE"]),
            mangle=TableConfig(enabled=True),
        )
        ruleset = compile_for(IPV4, FirewallConfig(iptables=family))
        lines = lines_of(ruleset)

        assert ruleset.tables() == ["filter", "nat", "mangle"]
        assert lines.count("COMMIT") == 3
        assert lines.index("*nat") < lines.index("-A POSTROUTING -o eth0 -j MASQUERADE") < lines.index("*mangle")

    def test_disabled_nat_not_emitted(self):
        family = FamilyConfig(nat=TableConfig(enabled=False, append=["-A POSTROUTING -j MASQUERADE"]))
        ruleset = compile_for(IPV4, FirewallConfig(iptables=family))

        assert ruleset.tables() == ["filter"]
        assert "MASQUERADE" not in ruleset.render()

    def test_append_is_per_family(self):
        firewall = FirewallConfig(iptables=FamilyConfig(append=["-A INPUT -s 10.0.0.0/8 -j ACCEPT"]))

        assert "-A INPUT -s 10.0.0.0/8 -j ACCEPT" in lines_of(compile_for(IPV4, firewall))
        assert "10.0.0.0/8" not in compile_for(IPV6, firewall).render()

    def test_deterministic(self):
        networks = {"Office": ["10.1.0.0/16", "10.2.0.0/16"]}
        firewall = FirewallConfig(accept=["Office", "22", "any", "443"], drop=["10.9.9.9", "any"])

        assert compile_for(IPV4, firewall, networks).render() == compile_for(IPV4, firewall, networks).render()


class TestPhases:
    """Tests for individual assembly phases."""

    def test_icmp_chain(self):
        rules = [r.render() for r in icmp_chain(IPV6).rules()]

        assert rules[0] == '-A icmp -p ipv6-icmp --icmpv6-type echo-request -m comment --comment "echo-request"'
        assert rules[-2:] == ["-A icmp -j ratelimit", "-A icmp -j ACCEPT"]

    def test_catch_all_reject_codes(self):
        v4 = [r.render() for r in catch_all(IPV4).rules()]
        v6 = [r.render() for r in catch_all(IPV6).rules()]

        assert v4 == [
            "-A INPUT -j loganddrop",
            "-A INPUT -p tcp -j REJECT --reject-with tcp-reset",
            "-A INPUT -p udp -j REJECT --reject-with icmp-port-unreachable",
            "-A INPUT -j REJECT",
        ]
        assert "-A INPUT -p udp -j REJECT --reject-with icmp6-port-unreachable" in v6
