"""
CloudFormation stack event tailing and failure diagnostics.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import click

from ..errors import AwsCliError, TailTimeout
from .aws_cli import AwsCli

logger = logging.getLogger(__name__)

STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"

SUCCESS_STATUSES = {
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "IMPORT_COMPLETE",
    "DELETE_COMPLETE",
}

# Allowance for local clock drift against CloudFormation event timestamps
CLOCK_SKEW = timedelta(seconds=60)


def is_terminal_status(status: Optional[str]) -> bool:
    """Check whether a stack status is final."""
    if not status or "IN_PROGRESS" in status:
        return False
    return status.endswith("_COMPLETE") or status.endswith("_FAILED")


def parse_timestamp(value: str) -> datetime:
    """Parse an event timestamp as printed by the aws CLI."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def status_emoji(status: str) -> str:
    """Get emoji for resource status."""
    if "COMPLETE" in status and "ROLLBACK" not in status:
        return "✅"
    elif "FAILED" in status:
        return "❌"
    elif "IN_PROGRESS" in status:
        return "🔄"
    elif "ROLLBACK" in status:
        return "↩️"
    else:
        return "•"


def format_event(event: Dict[str, Any]) -> str:
    """Format a stack event as a single line."""
    status = event["ResourceStatus"]
    timestamp = parse_timestamp(event["Timestamp"]).strftime("%H:%M:%S")
    line = (
        f"{status_emoji(status)} {timestamp} {event['LogicalResourceId']} "
        f"({event['ResourceType']}) {status}"
    )
    if event.get("ResourceStatusReason"):
        line += f" - {event['ResourceStatusReason']}"
    return line


def latest_event_id(cli: AwsCli, stack_name: str) -> Optional[str]:
    """Get the id of the newest event of a stack.

    Returns:
        Event id, or None if the stack does not exist or has no events
    """
    try:
        response = cli.run_json(
            ["describe-stack-events", "--stack-name", stack_name, "--max-items", "1"]
        )
    except AwsCliError as e:
        if "does not exist" in e.output:
            return None
        raise

    events = response.get("StackEvents", [])
    if events:
        return str(events[0]["EventId"])
    return None


def failure_recommendations(resource_type: str, reason: str) -> List[str]:
    """Get recommendations based on failure reason."""
    recommendations = []

    if resource_type == "AWS::S3::Bucket":
        if "BucketNotEmpty" in reason or "bucket is not empty" in reason.lower():
            recommendations.append("Empty the S3 bucket before deleting the stack")
        elif "already exists" in reason.lower():
            recommendations.append(
                "S3 bucket name already exists. Choose a different name."
            )

    if "AccessDenied" in reason or "is not authorized" in reason:
        recommendations.append("Check IAM permissions for CloudFormation")

    if "requires capabilities" in reason:
        recommendations.append("Pass the required --capabilities to apply")

    if resource_type.startswith("AWS::EC2::") and "DependencyViolation" in reason:
        recommendations.append(
            "VPC resources have dependencies. Check security groups and ENIs."
        )

    if "timeout" in reason.lower():
        recommendations.append("Operation timed out. Check resource logs for details.")

    return recommendations


@dataclass
class TailResult:
    """Final state reached by a tailed stack."""

    stack_name: str
    status: Optional[str]
    failed_events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Check if the stack operation finished successfully."""
        return self.status in SUCCESS_STATUSES

    def failure_report(self) -> List[str]:
        """Summarize failed resources and what to do about them."""
        lines = []
        recommendations: List[str] = []

        if self.failed_events:
            lines.append(f"❌ Failed Resources ({len(self.failed_events)}):")
            for event in self.failed_events:
                reason = event.get("ResourceStatusReason", "No reason provided")
                lines.append(
                    f"  - {event['LogicalResourceId']} ({event['ResourceType']}): {reason}"
                )
                for rec in failure_recommendations(event["ResourceType"], reason):
                    if rec not in recommendations:
                        recommendations.append(rec)

        if recommendations:
            lines.append("💡 Recommendations:")
            for i, rec in enumerate(recommendations, 1):
                lines.append(f"  {i}. {rec}")

        return lines


class EventTailer:
    """Follow stack events until the stack reaches a terminal status."""

    def __init__(
        self,
        cli: AwsCli,
        stack_name: str,
        interval: float = 5.0,
        since: Optional[datetime] = None,
        timeout: Optional[float] = None,
        echo: Callable[[str], None] = click.echo,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        after_event_id: Optional[str] = None,
    ):
        """
        Initialize the tailer.

        Args:
            cli: Runner for aws cloudformation commands
            stack_name: Stack to follow
            interval: Seconds between polls
            since: Ignore events older than this while no event id is known;
                when None the current stack status is checked first and old
                history is skipped
            timeout: Give up after this many seconds
            after_event_id: Newest event recorded before the operation started;
                it and everything older is skipped
        """
        self.cli = cli
        self.stack_name = stack_name
        self.interval = interval
        self.since = since
        self.timeout = timeout
        self.echo = echo
        self.sleep = sleep
        self.clock = clock

        self.last_event_id: Optional[str] = after_event_id
        self.last_status: Optional[str] = None
        self.failed_events: List[Dict[str, Any]] = []

    def current_status(self) -> Optional[str]:
        """Read the stack status from describe-stacks."""
        response = self.cli.run_json(["describe-stacks", "--stack-name", self.stack_name])
        stacks = response.get("Stacks", [])
        if stacks:
            return str(stacks[0]["StackStatus"])
        return None

    def fetch_events(self) -> List[Dict[str, Any]]:
        """Return events not seen yet, oldest first."""
        response = self.cli.run_json(
            ["describe-stack-events", "--stack-name", self.stack_name, "--max-items", "100"]
        )

        # The time cut-off only applies to a stack that had no events before
        new_events = []
        for event in response.get("StackEvents", []):
            if event["EventId"] == self.last_event_id:
                break
            if (
                self.last_event_id is None
                and self.since
                and parse_timestamp(event["Timestamp"]) < self.since
            ):
                break
            new_events.append(event)

        if new_events:
            self.last_event_id = new_events[0]["EventId"]

        new_events.reverse()
        return new_events

    def _is_stack_event(self, event: Dict[str, Any]) -> bool:
        return (
            event["LogicalResourceId"] == self.stack_name
            and event["ResourceType"] == STACK_RESOURCE_TYPE
        )

    def wait(self) -> TailResult:
        """Poll events until a terminal stack status is reported.

        Raises:
            TailTimeout: if ``timeout`` elapses first
        """
        started = self.clock()

        if self.since is None:
            status = self.current_status()
            if is_terminal_status(status):
                self.echo(f"Stack {self.stack_name} is {status}")
                return TailResult(self.stack_name, status)
            self.since = started - CLOCK_SKEW
            if self.last_event_id is None:
                self.last_event_id = latest_event_id(self.cli, self.stack_name)

        while True:
            for event in self.fetch_events():
                self.echo(format_event(event))

                if event["ResourceStatus"].endswith("_FAILED"):
                    self.failed_events.append(event)

                if self._is_stack_event(event):
                    self.last_status = event["ResourceStatus"]
                    if is_terminal_status(self.last_status):
                        return TailResult(
                            self.stack_name, self.last_status, list(self.failed_events)
                        )

            if self.timeout is not None:
                elapsed = (self.clock() - started).total_seconds()
                if elapsed >= self.timeout:
                    raise TailTimeout(
                        f"Stack {self.stack_name} did not finish within "
                        f"{self.timeout:.0f}s (last status: {self.last_status or 'unknown'})"
                    )

            logger.debug("No terminal status yet for %s, sleeping %ss", self.stack_name, self.interval)
            self.sleep(self.interval)
