"""Unit tests for configuration management."""

import os
import tempfile
from unittest.mock import patch, mock_open

import pytest

from vm_archive.config import AppConfig, ConfigLoader, config_loader
from vm_archive.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep VM_ARCHIVE_* variables of the host out of the tests."""
    for env_var in ConfigLoader.ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)


def write_config(content: str) -> str:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        f.write(content)
        return f.name


class TestAppConfig:
    """Test AppConfig Pydantic model."""

    def test_app_config_defaults(self):
        config = AppConfig()
        assert config.xo_host is None
        assert config.xo_user is None
        assert config.session_ttl == "1d"
        assert config.local_root == "/var/tmp/vm-archive"
        assert config.s3_bucket is None
        assert config.restore_days == 7
        assert config.xo_cli == "xo-cli"
        assert config.log_level == "INFO"

    def test_app_config_log_level_normalization(self):
        assert AppConfig(log_level="debug").log_level == "DEBUG"
        assert AppConfig(log_level="warn").log_level == "WARNING"

    def test_app_config_invalid_log_level(self):
        with pytest.raises(ValueError, match="log_level must be one of"):
            AppConfig(log_level="TRACE")

    def test_session_ttl_format(self):
        for ttl in ["30m", "12h", "1d", "2w", "3600"]:
            assert AppConfig(session_ttl=ttl).session_ttl == ttl
        for ttl in ["one day", "1 d", "-1d", "1dd"]:
            with pytest.raises(ValueError):
                AppConfig(session_ttl=ttl)

    def test_bucket_normalization(self):
        assert AppConfig(s3_bucket="s3://archives/").s3_bucket == "archives"
        assert AppConfig(s3_bucket="  archives ").s3_bucket == "archives"
        assert AppConfig(s3_bucket="s3://").s3_bucket is None

    def test_restore_days_must_be_positive(self):
        with pytest.raises(ValueError):
            AppConfig(restore_days=0)

    def test_app_config_forbids_unknown_fields(self):
        with pytest.raises(ValueError):
            AppConfig(ssh_key_path="/key")


class TestRequire:
    def test_require_passes_when_set(self):
        AppConfig(xo_host="https://xo", xo_user="admin").require("xo_host", "xo_user")

    def test_require_names_every_missing_field(self):
        config = AppConfig(xo_host="https://xo")
        with pytest.raises(ConfigurationError) as excinfo:
            config.require("xo_host", "xo_user", "s3_bucket")
        assert excinfo.value.missing == ["xo_user", "s3_bucket"]
        assert "xo_user, s3_bucket" in str(excinfo.value)

    def test_require_nothing(self):
        AppConfig().require()


class TestConfigLoader:
    """Test ConfigLoader class."""

    def test_load_config_with_no_file_returns_defaults(self):
        loader = ConfigLoader()
        with patch("os.path.exists", return_value=False):
            config = loader.load_config()
        assert isinstance(config, AppConfig)
        assert config.session_ttl == "1d"

    def test_load_config_from_specified_path(self):
        temp_path = write_config(
            "xo_host: https://xo.example.com\nxo_user: backup\ns3_bucket: archives\nsession_ttl: 12h\n"
        )
        try:
            config = ConfigLoader().load_config(temp_path)
            assert config.xo_host == "https://xo.example.com"
            assert config.xo_user == "backup"
            assert config.s3_bucket == "archives"
            assert config.session_ttl == "12h"
        finally:
            os.unlink(temp_path)

    def test_load_config_from_default_locations(self):
        loader = ConfigLoader()

        def mock_exists(path):
            return path == "config.yaml"

        with patch("os.path.exists", side_effect=mock_exists):
            with patch("builtins.open", mock_open(read_data="local_root: /srv/staging\n")):
                config = loader.load_config()
        assert config.local_root == "/srv/staging"

    def test_load_config_with_empty_file(self):
        temp_path = write_config("")
        try:
            config = ConfigLoader().load_config(temp_path)
            assert config.log_level == "INFO"
        finally:
            os.unlink(temp_path)

    def test_load_config_with_invalid_yaml(self):
        temp_path = write_config("key: value\n  invalid indentation\n")
        try:
            with pytest.raises(ConfigurationError, match="Failed to parse configuration file"):
                ConfigLoader().load_config(temp_path)
        finally:
            os.unlink(temp_path)

    def test_load_config_with_invalid_format(self):
        temp_path = write_config("- item1\n- item2\n")
        try:
            with pytest.raises(ConfigurationError, match="Invalid configuration format"):
                ConfigLoader().load_config(temp_path)
        finally:
            os.unlink(temp_path)

    def test_load_config_with_unknown_fields(self):
        temp_path = write_config("xo_host: https://xo\nunknown_field: value\n")
        try:
            with pytest.raises(ConfigurationError, match="Invalid configuration"):
                ConfigLoader().load_config(temp_path)
        finally:
            os.unlink(temp_path)

    def test_load_config_file_not_found(self):
        with pytest.raises(ConfigurationError):
            ConfigLoader().load_config("/nonexistent/path/config.yaml")


class TestEnvironmentOverrides:
    def test_environment_overrides_file(self, monkeypatch):
        temp_path = write_config("s3_bucket: from-file\nxo_user: file-user\n")
        monkeypatch.setenv("VM_ARCHIVE_S3_BUCKET", "from-env")
        try:
            config = ConfigLoader().load_config(temp_path)
            assert config.s3_bucket == "from-env"
            assert config.xo_user == "file-user"
        finally:
            os.unlink(temp_path)

    def test_integer_conversion(self, monkeypatch):
        monkeypatch.setenv("VM_ARCHIVE_RESTORE_DAYS", "3")
        with patch("os.path.exists", return_value=False):
            assert ConfigLoader().load_config().restore_days == 3

    def test_invalid_integer_is_a_configuration_error(self, monkeypatch):
        monkeypatch.setenv("VM_ARCHIVE_RESTORE_DAYS", "three")
        with patch("os.path.exists", return_value=False):
            with pytest.raises(ConfigurationError, match="VM_ARCHIVE_RESTORE_DAYS"):
                ConfigLoader().load_config()

    def test_every_setting_has_an_environment_variable(self, monkeypatch):
        monkeypatch.setenv("VM_ARCHIVE_XO_HOST", "https://xo")
        monkeypatch.setenv("VM_ARCHIVE_XO_USER", "admin")
        monkeypatch.setenv("VM_ARCHIVE_XO_PASSWORD", "secret")
        monkeypatch.setenv("VM_ARCHIVE_SESSION_TTL", "2h")
        monkeypatch.setenv("VM_ARCHIVE_LOCAL_ROOT", "/srv/staging")
        monkeypatch.setenv("VM_ARCHIVE_S3_ENDPOINT_URL", "https://s3.example.com")
        monkeypatch.setenv("VM_ARCHIVE_S3_REGION", "eu-west-1")
        monkeypatch.setenv("VM_ARCHIVE_XO_CLI", "/opt/xo/bin/xo-cli")
        monkeypatch.setenv("VM_ARCHIVE_LOG_LEVEL", "error")
        with patch("os.path.exists", return_value=False):
            config = ConfigLoader().load_config()
        assert config.xo_host == "https://xo"
        assert config.xo_user == "admin"
        assert config.xo_password == "secret"
        assert config.session_ttl == "2h"
        assert config.local_root == "/srv/staging"
        assert config.s3_endpoint_url == "https://s3.example.com"
        assert config.s3_region == "eu-west-1"
        assert config.xo_cli == "/opt/xo/bin/xo-cli"
        assert config.log_level == "ERROR"


class TestGlobalConfigLoader:
    def test_global_config_loader_exists(self):
        assert isinstance(config_loader, ConfigLoader)

    def test_search_paths_are_expanded(self):
        paths = ConfigLoader.search_paths()
        assert paths[-1] == "config.yaml"
        assert not any(path.startswith("~") for path in paths)
