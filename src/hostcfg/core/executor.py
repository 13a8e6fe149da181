"""Command execution and file installation.

Provides:
- Safe command execution with output capture
- Atomic file writes
- Dry-run mode support
"""

import os
import secrets
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hostcfg.core.context import ExecutionContext
from hostcfg.core.exceptions import ExecutionError


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture."""

    def __init__(self, ctx: ExecutionContext) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
        """
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        capture: bool = True,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Execute a command.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            capture: Capture stdout/stderr
            timeout: Command timeout in seconds

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
        """
        if description:
            self.ctx.console.step(description)

        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(
                command=command,
                return_code=0,
                stdout="",
                stderr="",
            )

        try:
            result = subprocess.run(
                command,
                capture_output=capture,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                return_code=127,
            )

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout if capture else "",
            stderr=result.stderr if capture else "",
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr if capture else None,
            )

        return cmd_result

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = 0o600,
    ) -> None:
        """Write content to a file atomically.

        The content goes to a temporary file in the same directory which
        is then renamed over the target, so readers see either the old or
        the new file and never a partial one.

        Args:
            path: Destination path
            content: File content
            description: Human-readable description
            permissions: File permissions
        """
        desc = description or f"Write {path}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {len(content)} bytes to {path}")
            return

        path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp_{secrets.token_hex(8)}")

        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, permissions)
        try:
            with os.fdopen(fd, "w") as f:
                fd = None  # fdopen takes ownership
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if fd is not None:
                os.close(fd)
            tmp_path.unlink(missing_ok=True)
            raise
