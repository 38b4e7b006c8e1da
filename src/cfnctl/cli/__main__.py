#!/usr/bin/env python3
"""Main CLI entry point for cfnctl."""

import logging
import sys
from typing import Optional

import click

from .. import __version__
from ..config import load_config
from ..errors import CfnctlError
from .cloudformation import apply, exports, outputs, package, plan, tail, validate


@click.group()
@click.version_option(version=__version__, prog_name="cfnctl")
@click.option("--region", "-r", help="AWS region")
@click.option("--profile", help="AWS profile to use")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Config file (default: ./.cfnctl.yaml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--dry-run", is_flag=True, help="Log aws commands instead of running them")
@click.pass_context
def cli(
    ctx: click.Context,
    region: Optional[str],
    profile: Optional[str],
    config_path: Optional[str],
    verbose: bool,
    dry_run: bool,
) -> None:
    """Validate, package, plan, apply and inspect CloudFormation stacks.

    A thin wrapper that sequences calls to the aws cloudformation CLI.
    """
    level = logging.DEBUG if verbose else logging.INFO if dry_run else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(config_path).merge(region=region, profile=profile)
    except CfnctlError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)

    ctx.obj = {"config": config, "dry_run": dry_run}


cli.add_command(validate)
cli.add_command(package)
cli.add_command(plan)
cli.add_command(apply)
cli.add_command(tail)
cli.add_command(outputs)
cli.add_command(exports)


if __name__ == "__main__":
    cli()
