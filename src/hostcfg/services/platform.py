"""Platform detection and ruleset install targets.

Each supported platform family stores the rules in its own files and loads
them with its own service. The firewall steps receive an InstallTarget
instead of looking paths up themselves.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from hostcfg.core.config import FamilyConfig


OS_RELEASE_PATH = Path("/etc/os-release")


class PlatformFamily(str, Enum):
    """Supported target platform families."""
    DEBIAN = "debian"
    REDHAT = "redhat"
    UNKNOWN = "unknown"


DEBIAN_IDS = frozenset({"debian", "ubuntu", "raspbian", "linuxmint"})
REDHAT_IDS = frozenset({"rhel", "centos", "fedora", "rocky", "almalinux", "ol", "amzn"})


@dataclass(frozen=True)
class InstallTarget:
    """Where a ruleset is installed and how it is loaded."""
    path: Path
    reload_command: tuple[str, ...]

    def __str__(self) -> str:
        return f"{self.path} (reload: {' '.join(self.reload_command)})"


INSTALL_TARGETS: dict[PlatformFamily, dict[str, InstallTarget]] = {
    PlatformFamily.DEBIAN: {
        "iptables": InstallTarget(
            Path("/etc/iptables/rules.v4"),
            ("systemctl", "restart", "netfilter-persistent"),
        ),
        "ip6tables": InstallTarget(
            Path("/etc/iptables/rules.v6"),
            ("systemctl", "restart", "netfilter-persistent"),
        ),
    },
    PlatformFamily.REDHAT: {
        "iptables": InstallTarget(
            Path("/etc/sysconfig/iptables"),
            ("systemctl", "restart", "iptables"),
        ),
        "ip6tables": InstallTarget(
            Path("/etc/sysconfig/ip6tables"),
            ("systemctl", "restart", "ip6tables"),
        ),
    },
}

# Package providing the reload service, shown when a reload fails
PERSISTENCE_PACKAGES: dict[PlatformFamily, str] = {
    PlatformFamily.DEBIAN: "iptables-persistent",
    PlatformFamily.REDHAT: "iptables-services",
}


def parse_os_release(path: Path = OS_RELEASE_PATH) -> Optional[dict[str, str]]:
    """Parse an os-release file into a dict, None if it is missing."""
    try:
        with open(path) as f:
            result = {}
            for line in f:
                line = line.strip()
                if "=" in line and not line.startswith("#"):
                    key, _, value = line.partition("=")
                    result[key] = value.strip('"').strip("'")
            return result
    except FileNotFoundError:
        return None


def detect_platform(os_release: Optional[dict[str, str]] = None) -> PlatformFamily:
    """Detect the platform family from os-release ID and ID_LIKE.

    Args:
        os_release: Parsed os-release (read from /etc/os-release if None)
    """
    if os_release is None:
        os_release = parse_os_release()
    if not os_release:
        return PlatformFamily.UNKNOWN

    ids = [os_release.get("ID", "").lower()]
    ids.extend(os_release.get("ID_LIKE", "").lower().split())

    for distro_id in ids:
        if distro_id in DEBIAN_IDS:
            return PlatformFamily.DEBIAN
        if distro_id in REDHAT_IDS:
            return PlatformFamily.REDHAT
    return PlatformFamily.UNKNOWN


def get_install_target(
    step: str,
    platform: PlatformFamily,
    family_config: Optional[FamilyConfig] = None,
) -> Optional[InstallTarget]:
    """Pick the install target for a step.

    Configured ``rules_path`` / ``reload_command`` override the platform
    defaults. Returns None when the platform is unknown and the
    configuration does not supply both.
    """
    default = INSTALL_TARGETS.get(platform, {}).get(step)
    path = family_config.rules_path if family_config else None
    command = family_config.reload_command if family_config else None

    if path is None and default is not None:
        path = default.path
    if command is None and default is not None:
        command = list(default.reload_command)

    if path is None or not command:
        return None
    return InstallTarget(path=Path(path), reload_command=tuple(command))
