"""
Configuration management for cfnctl.

Settings come from a ``.cfnctl.yaml`` file in the working directory (or an
explicit ``--config`` path) and are overridden by command-line options.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigError

DEFAULT_CONFIG_FILE = ".cfnctl.yaml"


@dataclass
class WrapperConfig:
    """Settings shared by all subcommands."""

    # AWS connection
    region: Optional[str] = None
    profile: Optional[str] = None

    # Deployment defaults
    capabilities: List[str] = field(
        default_factory=lambda: ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
    )
    tags: Dict[str, str] = field(default_factory=dict)

    # Packaging
    s3_bucket: Optional[str] = None
    s3_prefix: Optional[str] = None

    # Parameter overrides from the environment
    env_prefix: str = "CFN_PARAM_"

    # Event tailing
    poll_interval: float = 5.0
    tail_timeout: Optional[float] = None

    def merge(self, **overrides: Any) -> "WrapperConfig":
        """Return a copy with every non-empty override applied."""
        data = self.to_dict()
        for key, value in overrides.items():
            if key not in data:
                raise ConfigError(f"Unknown setting: {key}")
            if value is None or value == () or value == [] or value == {}:
                continue
            data[key] = list(value) if isinstance(value, tuple) else value
        return WrapperConfig.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WrapperConfig":
        """Create config from dictionary."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown setting(s) in config: {', '.join(unknown)}")

        data = {k: v for k, v in data.items() if v is not None}

        if isinstance(data.get("capabilities"), str):
            data["capabilities"] = [data["capabilities"]]
        if "tags" in data:
            if not isinstance(data["tags"], dict):
                raise ConfigError("'tags' must be a mapping of key to value")
            data["tags"] = {str(k): str(v) for k, v in data["tags"].items()}

        return cls(**data)


def load_config(config_path: Optional[Union[str, Path]] = None) -> WrapperConfig:
    """Load settings from a YAML file.

    Without an explicit path, ``.cfnctl.yaml`` in the current directory is
    used when present; otherwise defaults apply.
    """
    if config_path is None:
        path = Path.cwd() / DEFAULT_CONFIG_FILE
        if not path.exists():
            return WrapperConfig()
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    return WrapperConfig.from_dict(data)
