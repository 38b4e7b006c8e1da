"""
Thin runner around the ``aws cloudformation`` command line.
"""

import json
import logging
import os
import subprocess
from typing import Any, Dict, List, Optional

from ..errors import AwsCliError

logger = logging.getLogger(__name__)


class AwsCli:
    """Build and run ``aws cloudformation`` commands."""

    def __init__(
        self,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        executable: str = "aws",
        dry_run: bool = False,
    ):
        """
        Initialize the runner.

        Args:
            region: AWS region passed as ``--region``
            profile: AWS profile passed as ``--profile``
            executable: Name or path of the aws binary
            dry_run: If True, log commands instead of running them
        """
        self.region = region
        self.profile = profile
        self.executable = executable
        self.dry_run = dry_run

    def build_command(self, args: List[str]) -> List[str]:
        """Return the full command line for a cloudformation subcommand."""
        command = [self.executable, "cloudformation", *args]
        if self.region:
            command.extend(["--region", self.region])
        if self.profile:
            command.extend(["--profile", self.profile])
        return command

    def run(self, args: List[str], env: Optional[Dict[str, str]] = None) -> str:
        """
        Run a subcommand and return its stdout.

        Raises:
            AwsCliError: if the command exits non-zero or cannot be started
        """
        command = self.build_command(args)
        logger.debug("Running command: %s", " ".join(command))

        if self.dry_run:
            logger.info("DRY RUN: %s", " ".join(command))
            return ""

        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        try:
            result = subprocess.run(
                command,
                env=process_env,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            raise AwsCliError(
                command, 127, message=f"'{self.executable}' executable not found on PATH"
            )

        if result.returncode != 0:
            logger.debug("Command failed with code %s", result.returncode)
            raise AwsCliError(command, result.returncode, result.stderr or result.stdout)

        return result.stdout

    def run_json(self, args: List[str]) -> Any:
        """Run a subcommand with ``--output json`` and decode the response."""
        output = self.run([*args, "--output", "json"])
        if not output.strip():
            return {}
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise AwsCliError(
                self.build_command(args),
                0,
                output,
                message=f"Could not parse JSON response: {e}",
            )

    def spawn(self, args: List[str]) -> subprocess.Popen:
        """Start a subcommand in the background with merged, line-buffered output."""
        command = self.build_command(args)
        logger.debug("Spawning command: %s", " ".join(command))

        try:
            return subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                start_new_session=True,
            )
        except FileNotFoundError:
            raise AwsCliError(
                command, 127, message=f"'{self.executable}' executable not found on PATH"
            )
