"""
AWS credential preflight checks.
"""

import logging
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ProfileNotFound

from .errors import CredentialsError

logger = logging.getLogger(__name__)


def create_session(region: Optional[str] = None, profile: Optional[str] = None) -> boto3.Session:
    """Create AWS session with appropriate credentials."""
    session_args = {}
    if region:
        session_args["region_name"] = region
    if profile:
        session_args["profile_name"] = profile
    try:
        return boto3.Session(**session_args)
    except ProfileNotFound as e:
        raise CredentialsError(str(e))


def resolve_region(region: Optional[str] = None, profile: Optional[str] = None) -> Optional[str]:
    """Return the explicit region, or the one configured for the profile."""
    if region:
        return region
    return create_session(profile=profile).region_name


def check_credentials(region: Optional[str] = None, profile: Optional[str] = None) -> Dict[str, str]:
    """Verify that AWS credentials are configured and accepted.

    Returns:
        Dictionary with the caller's account and ARN

    Raises:
        CredentialsError: if no credentials are found or STS rejects them
    """
    session = create_session(region, profile)

    try:
        identity = session.client("sts").get_caller_identity()
    except NoCredentialsError:
        raise CredentialsError(
            "AWS credentials are not configured. Run 'aws configure' or set AWS_PROFILE."
        )
    except ClientError as e:
        raise CredentialsError(
            f"AWS credentials were rejected: {e.response['Error'].get('Message', e)}"
        )
    except BotoCoreError as e:
        raise CredentialsError(f"Could not verify AWS credentials: {e}")

    logger.debug("Using AWS identity %s", identity["Arn"])
    return {"account": identity["Account"], "arn": identity["Arn"]}
