"""hostcfg - host configuration agent.

Applies declarative host configuration, including compiled
iptables/ip6tables firewall rulesets guarded by an explicit force.
"""

__version__ = "1.0.0"
