"""
CloudFormation stack operations built on the aws CLI.
"""

import logging
import re
import shlex
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import click

from ..errors import AwsCliError
from .aws_cli import AwsCli
from .events import CLOCK_SKEW, EventTailer, TailResult, latest_event_id
from .parameters import to_overrides

logger = logging.getLogger(__name__)

CHANGE_SET_ARN = re.compile(r"arn:aws[\w-]*:cloudformation:[^\s]+:changeSet/[^\s]+")

# Lines printed by "aws cloudformation deploy"
EXECUTE_MARKER = "Waiting for stack create/update to complete"
NO_CHANGES_MARKER = "No changes to deploy"

ACTION_SYMBOLS = {
    "Add": "+",
    "Modify": "~",
    "Remove": "-",
    "Import": "<",
    "Dynamic": "?",
}


def to_env_name(key: str, prefix: str = "") -> str:
    """Convert an output key such as ``ApiEndpoint`` to ``API_ENDPOINT``."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", key)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    name = re.sub(r"[^0-9A-Za-z]+", "_", name).strip("_").upper()
    name = f"{prefix}{name}"
    if name[:1].isdigit():
        name = f"_{name}"
    return name


@dataclass
class ChangeSetPlan:
    """A created, not yet executed change set."""

    stack_name: str
    change_set_id: Optional[str] = None
    status: str = "NO_CHANGES"
    status_reason: Optional[str] = None
    changes: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        """Check if applying the plan would change anything."""
        return bool(self.changes)

    def format(self) -> str:
        """Format the plan as a readable change summary."""
        if not self.change_set_id:
            return f"No changes to deploy. Stack {self.stack_name} is up to date"

        lines = [f"Change set: {self.change_set_id}", f"Status: {self.status}"]
        if self.status_reason:
            lines.append(f"Reason: {self.status_reason}")

        if self.changes:
            lines.append(f"\nChanges ({len(self.changes)}):")
            for change in self.changes:
                symbol = ACTION_SYMBOLS.get(change["action"], "*")
                line = (
                    f"  {symbol} {change['action']:<7} {change['logical_id']} "
                    f"({change['resource_type']})"
                )
                if change.get("replacement") in ("True", "Conditional"):
                    line += f" [replacement: {change['replacement']}]"
                lines.append(line)

        return "\n".join(lines)


class StackManager:
    """Run deployment workflow steps for a CloudFormation stack."""

    def __init__(
        self,
        cli: Optional[AwsCli] = None,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        poll_interval: float = 5.0,
        tail_timeout: Optional[float] = None,
        echo: Callable[[str], None] = click.echo,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize stack manager.

        Args:
            cli: Command runner (created from region/profile if not provided)
            region: AWS region
            profile: AWS profile to use
            poll_interval: Seconds between event polls while tailing
            tail_timeout: Give up tailing after this many seconds
        """
        self.cli = cli or AwsCli(region=region, profile=profile)
        self.poll_interval = poll_interval
        self.tail_timeout = tail_timeout
        self.echo = echo
        self.sleep = sleep

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def validate_template(self, template: Union[str, Path]) -> Dict[str, Any]:
        """Validate a CloudFormation template.

        Args:
            template: Path to the template file

        Returns:
            Validation result
        """
        response = self.cli.run_json(
            ["validate-template", "--template-body", f"file://{template}"]
        )

        return {
            "valid": True,
            "parameters": response.get("Parameters", []),
            "capabilities": response.get("Capabilities", []),
            "capabilities_reason": response.get("CapabilitiesReason", ""),
            "description": response.get("Description", ""),
        }

    def package_template(
        self,
        template: Union[str, Path],
        s3_bucket: str,
        s3_prefix: Optional[str] = None,
        output: Optional[Union[str, Path]] = None,
        kms_key_id: Optional[str] = None,
    ) -> Path:
        """Upload local artifacts to S3 and write the packaged template.

        Returns:
            Path of the packaged template
        """
        template = Path(template)
        if output is None:
            output = template.with_name(f"{template.stem}.packaged{template.suffix}")
        output = Path(output)

        args = [
            "package",
            "--template-file",
            str(template),
            "--s3-bucket",
            s3_bucket,
            "--output-template-file",
            str(output),
        ]
        if s3_prefix:
            args.extend(["--s3-prefix", s3_prefix])
        if kms_key_id:
            args.extend(["--kms-key-id", kms_key_id])
        if output.suffix == ".json":
            args.append("--use-json")

        self.cli.run(args)
        logger.info("Packaged %s to %s", template, output)
        return output

    def _deploy_args(
        self,
        stack_name: str,
        template: Union[str, Path],
        parameters: Optional[Mapping[str, str]] = None,
        capabilities: Optional[List[str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        s3_bucket: Optional[str] = None,
        s3_prefix: Optional[str] = None,
    ) -> List[str]:
        args = [
            "deploy",
            "--stack-name",
            stack_name,
            "--template-file",
            str(template),
            "--no-fail-on-empty-changeset",
        ]
        if parameters:
            args.extend(["--parameter-overrides", *to_overrides(parameters)])
        if capabilities:
            args.extend(["--capabilities", *capabilities])
        if tags:
            args.extend(["--tags", *[f"{k}={tags[k]}" for k in sorted(tags)]])
        if s3_bucket:
            args.extend(["--s3-bucket", s3_bucket])
            if s3_prefix:
                args.extend(["--s3-prefix", s3_prefix])
        return args

    def plan(
        self,
        stack_name: str,
        template: Union[str, Path],
        parameters: Optional[Mapping[str, str]] = None,
        capabilities: Optional[List[str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        s3_bucket: Optional[str] = None,
        s3_prefix: Optional[str] = None,
    ) -> ChangeSetPlan:
        """Create a change set without executing it and describe its changes."""
        args = self._deploy_args(
            stack_name, template, parameters, capabilities, tags, s3_bucket, s3_prefix
        )
        args.append("--no-execute-changeset")

        output = self.cli.run(args)
        match = CHANGE_SET_ARN.search(output)
        if not match:
            logger.debug("No change set created for %s", stack_name)
            return ChangeSetPlan(stack_name)

        return self.describe_change_set(stack_name, match.group(0))

    def describe_change_set(self, stack_name: str, change_set: str) -> ChangeSetPlan:
        """Describe a change set by name or ARN."""
        args = ["describe-change-set", "--change-set-name", change_set]
        if not change_set.startswith("arn:"):
            args.extend(["--stack-name", stack_name])
        response = self.cli.run_json(args)

        changes = []
        for change in response.get("Changes", []):
            resource = change.get("ResourceChange", {})
            changes.append(
                {
                    "action": resource.get("Action", ""),
                    "logical_id": resource.get("LogicalResourceId", ""),
                    "resource_type": resource.get("ResourceType", ""),
                    "replacement": resource.get("Replacement"),
                }
            )

        return ChangeSetPlan(
            stack_name=stack_name,
            change_set_id=response.get("ChangeSetId", change_set),
            status=response.get("Status", "UNKNOWN"),
            status_reason=response.get("StatusReason"),
            changes=changes,
        )

    def apply(
        self,
        stack_name: str,
        template: Union[str, Path],
        parameters: Optional[Mapping[str, str]] = None,
        capabilities: Optional[List[str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        s3_bucket: Optional[str] = None,
        s3_prefix: Optional[str] = None,
    ) -> Optional[TailResult]:
        """Deploy a template and follow the stack events to completion.

        ``aws cloudformation deploy`` runs in the background only until it
        starts executing the change set; from then on stack events are
        tailed directly.

        Returns:
            Final tail result, or None when there was nothing to deploy
        """
        args = self._deploy_args(
            stack_name, template, parameters, capabilities, tags, s3_bucket, s3_prefix
        )

        if self.cli.dry_run:
            self.cli.run(args)
            return TailResult(stack_name, None)

        since = self._now() - CLOCK_SKEW
        after_event_id = latest_event_id(self.cli, stack_name)
        process = self.cli.spawn(args)
        captured: List[str] = []
        handed_off = False

        try:
            for line in process.stdout:
                line = line.rstrip()
                if not line:
                    continue
                captured.append(line)
                self.echo(line)
                if EXECUTE_MARKER in line:
                    handed_off = True
                    break
        except BaseException:
            process.terminate()
            process.wait()
            raise

        if handed_off:
            logger.debug("Change set executing, stopping deploy process %s", process.pid)
            process.terminate()
        returncode = process.wait()
        process.stdout.close()

        if handed_off:
            return self._tail(stack_name, since, after_event_id)

        if returncode != 0:
            raise AwsCliError(self.cli.build_command(args), returncode, "\n".join(captured))

        if any(NO_CHANGES_MARKER in line for line in captured):
            return None

        return TailResult(stack_name, self.get_stack_status(stack_name))

    def execute_change_set(self, stack_name: str, change_set: str) -> TailResult:
        """Execute a previously planned change set and follow its events."""
        args = ["execute-change-set", "--change-set-name", change_set]
        if not change_set.startswith("arn:"):
            args.extend(["--stack-name", stack_name])

        if self.cli.dry_run:
            self.cli.run(args)
            return TailResult(stack_name, None)

        since = self._now() - CLOCK_SKEW
        after_event_id = latest_event_id(self.cli, stack_name)
        self.cli.run(args)

        return self._tail(stack_name, since, after_event_id)

    def tail(self, stack_name: str) -> TailResult:
        """Follow an in-progress stack operation until it finishes."""
        if self.cli.dry_run:
            logger.info("DRY RUN: would follow events of %s", stack_name)
            return TailResult(stack_name, None)
        return self._tail(stack_name, None)

    def _tail(
        self,
        stack_name: str,
        since: Optional[datetime],
        after_event_id: Optional[str] = None,
    ) -> TailResult:
        tailer = EventTailer(
            self.cli,
            stack_name,
            interval=self.poll_interval,
            since=since,
            timeout=self.tail_timeout,
            echo=self.echo,
            sleep=self.sleep,
            after_event_id=after_event_id,
        )
        return tailer.wait()

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        """Get current stack status."""
        try:
            response = self.cli.run_json(["describe-stacks", "--stack-name", stack_name])
        except AwsCliError as e:
            if "does not exist" in e.output:
                return None
            raise
        stacks = response.get("Stacks", [])
        if stacks:
            return str(stacks[0]["StackStatus"])
        return None

    def get_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        """Get outputs from a CloudFormation stack."""
        response = self.cli.run_json(["describe-stacks", "--stack-name", stack_name])
        outputs = {}
        for stack in response.get("Stacks", [])[:1]:
            for output in stack.get("Outputs", []):
                outputs[output["OutputKey"]] = output["OutputValue"]
        return outputs


def format_outputs(stack_name: str, outputs: Mapping[str, str]) -> str:
    """Format stack outputs as aligned ``key: value`` lines."""
    if not outputs:
        return f"No outputs found for stack {stack_name}"

    width = max(len(key) for key in outputs)
    lines = [f"=== Stack Outputs for {stack_name} ==="]
    for key, value in outputs.items():
        lines.append(f"  {key:<{width}}  {value}")
    return "\n".join(lines)


def format_exports(outputs: Mapping[str, str], prefix: str = "") -> str:
    """Format stack outputs as shell ``export`` statements."""
    return "\n".join(
        f"export {to_env_name(key, prefix)}={shlex.quote(value)}"
        for key, value in outputs.items()
    )
