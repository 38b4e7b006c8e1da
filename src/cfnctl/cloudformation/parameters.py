"""
Stack parameter loading: JSON parameters files and environment overrides.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from ..errors import ParameterError

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "CFN_PARAM_"


def _stringify(key: str, value: Any) -> str:
    """Convert a JSON scalar (or list of scalars) to a parameter value."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, list):
        return ",".join(_stringify(key, item) for item in value)
    raise ParameterError(
        f"Parameter '{key}' must be a string, number, boolean or list, "
        f"got {type(value).__name__}"
    )


def load_parameters_file(path: Union[str, Path]) -> Dict[str, str]:
    """Load stack parameters from a JSON file.

    Accepts either a flat object (``{"Key": "Value"}``) or the CloudFormation
    list form (``[{"ParameterKey": "Key", "ParameterValue": "Value"}]``).
    List entries with ``UsePreviousValue`` are left out so the stack keeps
    its stored value.

    Raises:
        ParameterError: if the file is missing, not valid JSON or has the wrong shape
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ParameterError(f"Parameters file not found: {path}")
    except json.JSONDecodeError as e:
        raise ParameterError(f"Invalid JSON in parameters file {path}: {e}")

    params: Dict[str, str] = {}

    if isinstance(data, dict):
        for key, value in data.items():
            params[key] = _stringify(key, value)
    elif isinstance(data, list):
        for entry in data:
            if not isinstance(entry, dict) or "ParameterKey" not in entry:
                raise ParameterError(
                    f"Entries in {path} must be objects with a ParameterKey"
                )
            key = entry["ParameterKey"]
            if entry.get("UsePreviousValue"):
                if "ParameterValue" in entry:
                    raise ParameterError(
                        f"Parameter {key} in {path} sets both UsePreviousValue "
                        "and ParameterValue"
                    )
                # deploy keeps the stored value of parameters it is not given
                logger.debug("Keeping previous value of parameter %s", key)
                continue
            params[key] = _stringify(key, entry.get("ParameterValue", ""))
    else:
        raise ParameterError(
            f"Parameters file {path} must contain a JSON object or list"
        )

    return params


def environment_overrides(
    prefix: str = DEFAULT_ENV_PREFIX, environ: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Collect parameter overrides from prefixed environment variables.

    ``CFN_PARAM_BucketName=foo`` becomes ``{"BucketName": "foo"}``.
    """
    if environ is None:
        environ = os.environ
    if not prefix:
        return {}

    overrides = {}
    for name, value in environ.items():
        if name.startswith(prefix) and len(name) > len(prefix):
            overrides[name[len(prefix):]] = value
    return overrides


def merge_parameters(
    file_params: Mapping[str, str], env_params: Mapping[str, str]
) -> Dict[str, str]:
    """Merge file parameters with environment overrides; the environment wins."""
    return {**file_params, **env_params}


def to_overrides(params: Mapping[str, str]) -> List[str]:
    """Format parameters as ``Key=Value`` items for ``--parameter-overrides``."""
    return [f"{key}={params[key]}" for key in sorted(params)]


def resolve_parameters(
    parameters_file: Optional[Union[str, Path]] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Load the parameters file (if any) and apply environment overrides."""
    file_params = load_parameters_file(parameters_file) if parameters_file else {}
    return merge_parameters(file_params, environment_overrides(env_prefix, environ))
