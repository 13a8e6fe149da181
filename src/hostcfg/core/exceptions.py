"""Custom exceptions for the hostcfg agent.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class HostCfgError(Exception):
    """Base exception for all hostcfg errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(HostCfgError):
    """Configuration file or settings errors.

    Raised when:
    - Config file not found or unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    - A rule entry matches any source on any port
    """
    exit_code = 2


class ValidationError(HostCfgError):
    """Input validation errors.

    Raised when:
    - Unknown address family requested
    - Invalid step name
    """
    exit_code = 3


class ExecutionError(HostCfgError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class FirewallError(HostCfgError):
    """Firewall ruleset errors.

    Raised when:
    - Installed ruleset cannot be read
    - Ruleset file cannot be written
    """
    exit_code = 15

    def __init__(
        self,
        message: str,
        *,
        family: Optional[str] = None,
        path: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.family = family
        self.path = path
