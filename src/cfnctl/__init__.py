"""
cfnctl: a command-line wrapper around the aws cloudformation deployment workflow.
"""

__version__ = "0.1.0"
