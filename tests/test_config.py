"""Unit tests for credential storage."""

import json
import stat

import pytest

from pygrive.config import DEFAULT_REDIRECT_URI, Config
from pygrive.exceptions import GriveConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make sure no credentials leak in from the environment."""
    for name in (
        "PYGRIVE_CONFIG_DIR",
        "PYGRIVE_CLIENT_ID",
        "PYGRIVE_CLIENT_SECRET",
        "PYGRIVE_REFRESH_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    """Tests for the Config class."""

    def test_missing_file_is_not_configured(self, tmp_path):
        """Test a fresh config directory has no credentials."""
        config = Config(tmp_path)
        assert not config.is_configured()
        assert config.client_id is None
        assert config.redirect_uri == DEFAULT_REDIRECT_URI

    def test_save_and_reload(self, tmp_path):
        """Test saved values are read back by a new instance."""
        config = Config(tmp_path / "cfg")
        config.set("id", "client")
        config.set("secret", "s3cret")
        config.set("refresh_token", "refresh")
        config.save()

        reloaded = Config(tmp_path / "cfg")
        assert reloaded.is_configured()
        assert reloaded.require_credentials() == ("client", "s3cret", "refresh")

    def test_saved_file_is_private(self, tmp_path):
        """Test the config file is only readable by its owner."""
        config = Config(tmp_path)
        config.set("id", "client")
        config.save()
        mode = stat.S_IMODE(config.get_config_path().stat().st_mode)
        assert mode == 0o600

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        """Test environment variables take precedence."""
        config = Config(tmp_path)
        config.set("id", "from-file")
        monkeypatch.setenv("PYGRIVE_CLIENT_ID", "from-env")
        assert config.client_id == "from-env"

    def test_config_dir_from_environment(self, tmp_path, monkeypatch):
        """Test PYGRIVE_CONFIG_DIR selects the directory."""
        monkeypatch.setenv("PYGRIVE_CONFIG_DIR", str(tmp_path))
        assert Config().get_config_path() == tmp_path / "config"

    def test_require_credentials_raises(self, tmp_path):
        """Test missing credentials raise a config error."""
        with pytest.raises(GriveConfigError, match="pygrive auth"):
            Config(tmp_path).require_credentials()

    def test_corrupt_file_raises(self, tmp_path):
        """Test an unparsable config file raises a config error."""
        (tmp_path / "config").write_text("{not json", encoding="utf-8")
        with pytest.raises(GriveConfigError, match="Cannot read config file"):
            Config(tmp_path)

    def test_non_object_file_raises(self, tmp_path):
        (tmp_path / "config").write_text(json.dumps(["a"]), encoding="utf-8")
        with pytest.raises(GriveConfigError, match="JSON object"):
            Config(tmp_path)
