"""Core framework components for the hostcfg agent."""

from hostcfg.core.exceptions import (
    HostCfgError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    FirewallError,
)

from hostcfg.core.context import ExecutionContext, create_context
from hostcfg.core.output import console, Console, Verbosity
from hostcfg.core.config import AppConfig, HostConfig
from hostcfg.core.safety import DangerLevel, may_apply
from hostcfg.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from hostcfg.core.executor import CommandExecutor

__all__ = [
    # Exceptions
    "HostCfgError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "FirewallError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "HostConfig",
    # Safety
    "DangerLevel",
    "may_apply",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
]
