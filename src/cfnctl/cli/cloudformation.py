#!/usr/bin/env python3
"""
CloudFormation deployment workflow commands.
"""

import json
import sys
from typing import Any, Dict, NoReturn, Optional, Tuple

import click

from ..cloudformation import StackManager, TailResult
from ..cloudformation.aws_cli import AwsCli
from ..cloudformation.parameters import resolve_parameters
from ..cloudformation.stack_manager import format_exports, format_outputs
from ..config import WrapperConfig
from ..credentials import check_credentials, resolve_region
from ..errors import CfnctlError, CredentialsError


def _exit_with_error(error: CfnctlError) -> NoReturn:
    click.echo(f"Error: {error}", err=True)
    sys.exit(error.exit_code)


def _manager(obj: Dict[str, Any], config: Optional[WrapperConfig] = None) -> StackManager:
    config = config or obj["config"]
    cli = AwsCli(region=config.region, profile=config.profile, dry_run=obj["dry_run"])
    return StackManager(
        cli, poll_interval=config.poll_interval, tail_timeout=config.tail_timeout
    )


def _parse_tags(ctx, param, values: Tuple[str, ...]) -> Dict[str, str]:
    tags = {}
    for value in values:
        key, sep, tag_value = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{value}'")
        tags[key] = tag_value
    return tags


def _preflight(obj: Dict[str, Any], config: WrapperConfig, skip: bool) -> None:
    if skip or obj["dry_run"]:
        return
    region = resolve_region(config.region, config.profile)
    if not region:
        raise CredentialsError("No AWS region configured. Pass --region or set AWS_REGION.")
    identity = check_credentials(region, config.profile)
    click.echo(f"🔐 AWS Account: {identity['account']} ({region})")


def _dry_run_notice(obj: Dict[str, Any]) -> bool:
    """Report a dry run instead of a result built from empty output."""
    if not obj["dry_run"]:
        return False
    click.echo("🔍 Dry run: aws commands were logged, nothing was executed", err=True)
    return True


def _report(result: Optional[TailResult], stack_name: str) -> None:
    """Print the outcome of a stack operation and exit non-zero on failure."""
    if result is None:
        click.echo(f"ℹ️  No changes to deploy. Stack {stack_name} is up to date")
        return

    if result.status is None:
        return

    if result.succeeded:
        click.echo(f"✅ Stack {stack_name}: {result.status}")
        return

    click.echo(f"❌ Stack {stack_name} finished in {result.status}", err=True)
    for line in result.failure_report():
        click.echo(line, err=True)
    sys.exit(1)


def deploy_options(func):
    """Options shared by plan and apply."""
    options = [
        click.option("--stack-name", "-s", required=True, help="CloudFormation stack name"),
        click.option(
            "--parameters",
            "-p",
            "parameters_file",
            type=click.Path(exists=True, dir_okay=False),
            help="JSON parameters file",
        ),
        click.option(
            "--env-prefix",
            help="Environment variable prefix for parameter overrides (default: CFN_PARAM_)",
        ),
        click.option(
            "--capabilities", "-c", multiple=True, help="Capabilities to acknowledge"
        ),
        click.option(
            "--tag", "tags", multiple=True, callback=_parse_tags, help="Stack tag KEY=VALUE"
        ),
        click.option("--s3-bucket", help="Bucket for templates larger than 51,200 bytes"),
        click.option("--s3-prefix", help="Key prefix inside --s3-bucket"),
        click.option(
            "--skip-preflight", is_flag=True, help="Skip the AWS credentials check"
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _deploy_settings(
    obj: Dict[str, Any],
    parameters_file: Optional[str],
    env_prefix: Optional[str],
    capabilities: Tuple[str, ...],
    tags: Dict[str, str],
    s3_bucket: Optional[str],
    s3_prefix: Optional[str],
) -> Tuple[WrapperConfig, Dict[str, str]]:
    config: WrapperConfig = obj["config"]
    config = config.merge(
        env_prefix=env_prefix,
        capabilities=capabilities,
        tags={**config.tags, **tags},
        s3_bucket=s3_bucket,
        s3_prefix=s3_prefix,
    )
    params = resolve_parameters(parameters_file, config.env_prefix)
    return config, params


@click.command()
@click.option(
    "--template",
    "-t",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Template file",
)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def validate(obj, template, output_json) -> None:
    """Validate a CloudFormation template."""
    try:
        result = _manager(obj).validate_template(template)
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    if output_json:
        click.echo(json.dumps(result, indent=2))
        return

    click.echo(f"✅ Template {template} is valid")
    if result["description"]:
        click.echo(f"Description: {result['description']}")

    if result["parameters"]:
        click.echo("\nParameters:")
        for param in result["parameters"]:
            line = f"  {param['ParameterKey']}"
            if "DefaultValue" in param:
                line += f" (default: {param['DefaultValue']})"
            click.echo(line)

    if result["capabilities"]:
        click.echo(f"\nRequired capabilities: {', '.join(result['capabilities'])}")
        if result["capabilities_reason"]:
            click.echo(f"  {result['capabilities_reason']}")


@click.command()
@click.option(
    "--template",
    "-t",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Template file",
)
@click.option("--s3-bucket", "-b", help="Bucket to upload local artifacts to")
@click.option("--s3-prefix", help="Key prefix for uploaded artifacts")
@click.option(
    "--output", "-o", type=click.Path(dir_okay=False), help="Packaged template path"
)
@click.option("--kms-key-id", help="KMS key for artifact encryption")
@click.pass_obj
def package(obj, template, s3_bucket, s3_prefix, output, kms_key_id) -> None:
    """Upload local artifacts and write a packaged template."""
    config: WrapperConfig = obj["config"]
    s3_bucket = s3_bucket or config.s3_bucket
    if not s3_bucket:
        raise click.UsageError("Missing option '--s3-bucket' (or s3_bucket in config)")

    try:
        packaged = _manager(obj).package_template(
            template,
            s3_bucket,
            s3_prefix=s3_prefix or config.s3_prefix,
            output=output,
            kms_key_id=kms_key_id,
        )
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    click.echo(f"📦 Packaged template written to {packaged}")


@click.command()
@click.option(
    "--template",
    "-t",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Template file",
)
@deploy_options
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def plan(
    obj,
    template,
    stack_name,
    parameters_file,
    env_prefix,
    capabilities,
    tags,
    s3_bucket,
    s3_prefix,
    skip_preflight,
    output_json,
) -> None:
    """Create a change set and show what it would change."""
    try:
        config, params = _deploy_settings(
            obj, parameters_file, env_prefix, capabilities, tags, s3_bucket, s3_prefix
        )
        _preflight(obj, config, skip_preflight)

        result = _manager(obj, config).plan(
            stack_name,
            template,
            parameters=params,
            capabilities=config.capabilities,
            tags=config.tags,
            s3_bucket=config.s3_bucket,
            s3_prefix=config.s3_prefix,
        )
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    if output_json:
        click.echo(
            json.dumps(
                {
                    "stack_name": result.stack_name,
                    "change_set_id": result.change_set_id,
                    "status": result.status,
                    "status_reason": result.status_reason,
                    "changes": result.changes,
                },
                indent=2,
            )
        )
    else:
        click.echo(result.format())


@click.command()
@click.option(
    "--template",
    "-t",
    type=click.Path(exists=True, dir_okay=False),
    help="Template file",
)
@click.option("--change-set", help="Execute an existing change set instead of deploying")
@deploy_options
@click.pass_obj
def apply(
    obj,
    template,
    change_set,
    stack_name,
    parameters_file,
    env_prefix,
    capabilities,
    tags,
    s3_bucket,
    s3_prefix,
    skip_preflight,
) -> None:
    """Deploy the template and follow stack events until done."""
    if not template and not change_set:
        raise click.UsageError("Missing option '--template' (or --change-set)")

    if change_set:
        # A planned change set already carries its template, parameters and tags
        ignored = {
            "--template": template,
            "--parameters": parameters_file,
            "--env-prefix": env_prefix,
            "--capabilities": capabilities,
            "--tag": tags,
            "--s3-bucket": s3_bucket,
            "--s3-prefix": s3_prefix,
        }
        given = [name for name, value in ignored.items() if value]
        if given:
            raise click.UsageError(
                f"--change-set cannot be combined with {', '.join(given)}"
            )

    try:
        config, params = _deploy_settings(
            obj, parameters_file, env_prefix, capabilities, tags, s3_bucket, s3_prefix
        )
        _preflight(obj, config, skip_preflight)
        manager = _manager(obj, config)

        if change_set:
            click.echo(f"🚀 Executing change set {change_set} on {stack_name}")
            result = manager.execute_change_set(stack_name, change_set)
        else:
            click.echo(f"🚀 Deploying {template} to {stack_name}")
            result = manager.apply(
                stack_name,
                template,
                parameters=params,
                capabilities=config.capabilities,
                tags=config.tags,
                s3_bucket=config.s3_bucket,
                s3_prefix=config.s3_prefix,
            )
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    _report(result, stack_name)


@click.command()
@click.option("--stack-name", "-s", required=True, help="CloudFormation stack name")
@click.option("--interval", type=float, help="Seconds between polls")
@click.option("--timeout", type=float, help="Give up after this many seconds")
@click.pass_obj
def tail(obj, stack_name, interval, timeout) -> None:
    """Follow stack events until the stack reaches a final status."""
    try:
        config = obj["config"].merge(poll_interval=interval, tail_timeout=timeout)
        result = _manager(obj, config).tail(stack_name)
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    _report(result, stack_name)


@click.command()
@click.option("--stack-name", "-s", required=True, help="CloudFormation stack name")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_obj
def outputs(obj, stack_name, output_json) -> None:
    """Show stack outputs."""
    try:
        stack_outputs = _manager(obj).get_stack_outputs(stack_name)
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    if output_json:
        click.echo(json.dumps(stack_outputs, indent=2))
    else:
        click.echo(format_outputs(stack_name, stack_outputs))


@click.command()
@click.option("--stack-name", "-s", required=True, help="CloudFormation stack name")
@click.option("--prefix", default="", help="Prefix for variable names")
@click.pass_obj
def exports(obj, stack_name, prefix) -> None:
    """Print stack outputs as shell export statements.

    Use with: eval "$(cfnctl exports -s my-stack)"
    """
    try:
        stack_outputs = _manager(obj).get_stack_outputs(stack_name)
    except CfnctlError as e:
        _exit_with_error(e)

    if _dry_run_notice(obj):
        return

    if not stack_outputs:
        click.echo(f"No outputs found for stack {stack_name}", err=True)
        return

    click.echo(format_exports(stack_outputs, prefix))
