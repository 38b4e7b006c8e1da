"""
CloudFormation stack deployment workflow.
"""

from .aws_cli import AwsCli
from .events import EventTailer, TailResult
from .stack_manager import ChangeSetPlan, StackManager

__all__ = ["AwsCli", "ChangeSetPlan", "EventTailer", "StackManager", "TailResult"]
