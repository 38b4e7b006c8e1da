"""
Exceptions raised by cfnctl.
"""

from typing import List, Optional


class CfnctlError(Exception):
    """Base class for all cfnctl errors."""

    exit_code = 1


class ConfigError(CfnctlError):
    """Invalid or unreadable configuration file."""


class ParameterError(CfnctlError):
    """Invalid stack parameters file or override."""


class CredentialsError(CfnctlError):
    """AWS credentials are missing or rejected."""


class TailTimeout(CfnctlError):
    """Stack did not reach a terminal status in time."""


class AwsCliError(CfnctlError):
    """The wrapped aws command exited with a non-zero status."""

    def __init__(
        self,
        command: List[str],
        returncode: int,
        output: str = "",
        message: Optional[str] = None,
    ):
        self.command = command
        self.returncode = returncode
        self.output = output.strip()
        self.exit_code = returncode if returncode > 0 else 1
        super().__init__(message or self._default_message())

    def _default_message(self) -> str:
        text = self.output or "no output"
        return f"'{' '.join(self.command[:3])}' failed with exit code {self.returncode}: {text}"
