"""Common utilities and error types for the test harness."""

import logging
import subprocess
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class HarnessError(Exception):
    """Base class for harness failures that fail the calling test."""


class ProvisioningError(HarnessError):
    """Provisioning engine exited non-zero.

    Carries the engine's raw diagnostics. Never retried: these are
    configuration or permission errors, not transient conditions.
    """

    def __init__(self, command: list[str], returncode: int, stdout: str = '', stderr: str = ''):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip()
        super().__init__(f"{' '.join(command)} failed (exit {returncode}): {detail}")


class MissingOutputError(HarnessError):
    """Named output does not exist in the applied state."""

    def __init__(self, name: str, available: Optional[list[str]] = None):
        self.name = name
        self.available = sorted(available or [])
        avail = ', '.join(self.available) if self.available else 'none'
        super().__init__(f"Output '{name}' not found (available: {avail})")


class ValidationTimeout(HarnessError):
    """Probe never satisfied the predicate within the retry budget."""

    def __init__(
        self,
        target: Any,
        attempts: int,
        last_outcome: Any = None,
        last_error: Optional[BaseException] = None,
    ):
        self.target = target
        self.attempts = attempts
        self.last_outcome = last_outcome
        self.last_error = last_error
        if last_outcome is not None:
            last = f"last outcome: {last_outcome}"
        elif last_error is not None:
            last = f"last error: {last_error}"
        else:
            last = "no outcome"
        super().__init__(f"{target} not valid after {attempts} attempt(s), {last}")


class MalformedPlanReport(HarnessError):
    """Plan report is missing a structural field the inspector needs."""


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)
