"""
Tests for configuration management.
"""

import pytest
import yaml

from cfnctl.config import WrapperConfig, load_config
from cfnctl.errors import ConfigError


class TestWrapperConfig:
    """Test WrapperConfig dataclass."""

    def test_default_initialization(self):
        """Test defaults."""
        config = WrapperConfig()

        assert config.region is None
        assert config.capabilities == ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
        assert config.env_prefix == "CFN_PARAM_"
        assert config.poll_interval == 5.0
        assert config.tags == {}

    def test_from_dict_normalizes_values(self):
        """Test a single capability string and non-string tags."""
        config = WrapperConfig.from_dict(
            {"capabilities": "CAPABILITY_AUTO_EXPAND", "tags": {"cost-center": 42}}
        )

        assert config.capabilities == ["CAPABILITY_AUTO_EXPAND"]
        assert config.tags == {"cost-center": "42"}

    def test_from_dict_unknown_key(self):
        """Test unknown settings are rejected."""
        with pytest.raises(ConfigError, match="stack_nmae"):
            WrapperConfig.from_dict({"stack_nmae": "typo"})

    def test_from_dict_bad_tags(self):
        """Test tags must be a mapping."""
        with pytest.raises(ConfigError, match="tags"):
            WrapperConfig.from_dict({"tags": ["a", "b"]})

    def test_merge_skips_empty_overrides(self):
        """Test None and empty values leave settings untouched."""
        config = WrapperConfig(region="us-west-2", s3_bucket="artifacts")

        merged = config.merge(region=None, capabilities=(), s3_bucket="other")

        assert merged.region == "us-west-2"
        assert merged.capabilities == ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
        assert merged.s3_bucket == "other"
        assert config.s3_bucket == "artifacts"

    def test_merge_tuple_becomes_list(self):
        """Test click multiple options are stored as lists."""
        merged = WrapperConfig().merge(capabilities=("CAPABILITY_AUTO_EXPAND",))

        assert merged.capabilities == ["CAPABILITY_AUTO_EXPAND"]

    def test_merge_unknown_key(self):
        """Test unknown override names are rejected."""
        with pytest.raises(ConfigError):
            WrapperConfig().merge(colour="blue")


class TestLoadConfig:
    """Test loading .cfnctl.yaml."""

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        """Test defaults when no config file exists."""
        monkeypatch.chdir(tmp_path)

        assert load_config() == WrapperConfig()

    def test_loads_file_from_cwd(self, tmp_path, monkeypatch):
        """Test .cfnctl.yaml in the working directory is used."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".cfnctl.yaml").write_text(
            yaml.dump({"region": "eu-central-1", "s3_bucket": "artifacts", "poll_interval": 2})
        )

        config = load_config()

        assert config.region == "eu-central-1"
        assert config.s3_bucket == "artifacts"
        assert config.poll_interval == 2

    def test_explicit_path(self, tmp_path):
        """Test loading an explicit config path."""
        path = tmp_path / "deploy.yaml"
        path.write_text("profile: ci\ntags:\n  team: platform\n")

        config = load_config(path)

        assert config.profile == "ci"
        assert config.tags == {"team": "platform"}

    def test_empty_file(self, tmp_path):
        """Test an empty file yields defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == WrapperConfig()

    def test_missing_explicit_path(self, tmp_path):
        """Test a missing explicit path is an error."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test YAML syntax errors are reported."""
        path = tmp_path / "bad.yaml"
        path.write_text("region: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(path)

    def test_non_mapping(self, tmp_path):
        """Test the top level must be a mapping."""
        path = tmp_path / "list.yaml"
        path.write_text("- region\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)
