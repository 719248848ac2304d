"""Unit tests for the pygrive CLI commands."""

import json
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from pygrive import __version__
from pygrive.cli import main
from pygrive.exceptions import GriveAuthenticationError, GrivePermissionError

from conftest import FakeDriveClient


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep credentials of the host environment out of the tests."""
    for name in (
        "PYGRIVE_CONFIG_DIR",
        "PYGRIVE_CLIENT_ID",
        "PYGRIVE_CLIENT_SECRET",
        "PYGRIVE_REFRESH_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "config"


@pytest.fixture
def credentials(monkeypatch):
    """Provide credentials through the environment."""
    monkeypatch.setenv("PYGRIVE_CLIENT_ID", "client")
    monkeypatch.setenv("PYGRIVE_CLIENT_SECRET", "secret")
    monkeypatch.setenv("PYGRIVE_REFRESH_TOKEN", "refresh")


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "auth" in result.output
        assert "sync" in result.output
        assert "--log-http" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_sync_help_lists_options(self, runner):
        result = runner.invoke(main, ["sync", "--help"])
        assert result.exit_code == 0
        for option in ("--dry-run", "--upload-only", "--download-speed", "--dir"):
            assert option in result.output


class TestAuthCommand:
    """Tests for the auth command."""

    def test_auth_requires_client(self, runner, config_dir):
        """Test auth without client ID and secret fails."""
        result = runner.invoke(main, ["--config-dir", str(config_dir), "auth"])
        assert result.exit_code == 1
        assert "required" in result.output

    def test_auth_print_url(self, runner, config_dir):
        """Test --print-url only prints the authorization URL."""
        result = runner.invoke(
            main,
            [
                "--config-dir",
                str(config_dir),
                "auth",
                "--id",
                "my-client",
                "--secret",
                "s",
                "--print-url",
            ],
        )
        assert result.exit_code == 0
        assert "accounts.google.com" in result.output
        assert "my-client" in result.output
        assert not (config_dir / "config").exists()

    @patch("pygrive.cli.wait_for_auth_code")
    @patch("pygrive.cli.OAuth2")
    def test_auth_saves_credentials(
        self, mock_oauth_class, mock_wait, runner, config_dir
    ):
        """Test a completed authorization stores the refresh token."""
        mock_oauth = Mock()
        mock_oauth.make_auth_url.return_value = "https://auth.example/url"
        mock_oauth.auth.return_value = Mock(refresh_token="new-refresh")
        mock_oauth_class.return_value = mock_oauth
        mock_wait.return_value = "the-code"

        result = runner.invoke(
            main,
            ["--config-dir", str(config_dir), "auth", "-i", "client", "-e", "secret"],
        )

        assert result.exit_code == 0
        mock_oauth.auth.assert_called_once_with("the-code")
        saved = json.loads((config_dir / "config").read_text(encoding="utf-8"))
        assert saved["refresh_token"] == "new-refresh"
        assert saved["id"] == "client"

    @patch("pygrive.cli.wait_for_auth_code")
    def test_auth_timeout(self, mock_wait, runner, config_dir):
        """Test a missing redirect fails with exit code 1."""
        mock_wait.side_effect = GriveAuthenticationError("Timed out")
        result = runner.invoke(
            main,
            ["--config-dir", str(config_dir), "auth", "-i", "client", "-e", "secret"],
        )
        assert result.exit_code == 1
        assert "Timed out" in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_sync_without_credentials(self, runner, config_dir, workdir):
        """Test sync refuses to run before auth."""
        result = runner.invoke(
            main, ["--config-dir", str(config_dir), "sync", "-p", str(workdir)]
        )
        assert result.exit_code == 1
        assert "pygrive auth" in result.output

    def test_contradictory_modes(self, runner, config_dir, workdir, credentials):
        result = runner.invoke(
            main,
            [
                "--config-dir",
                str(config_dir),
                "sync",
                "-p",
                str(workdir),
                "--upload-only",
                "--download-only",
            ],
        )
        assert result.exit_code == 1
        assert "cannot be combined" in result.output

    def test_sync_uploads(self, runner, config_dir, workdir, credentials):
        """Test a sync run against a stubbed Drive."""
        (workdir / "a.txt").write_bytes(b"hello")
        fake = FakeDriveClient()

        with patch("pygrive.cli.DriveClient", return_value=fake):
            result = runner.invoke(
                main,
                ["--config-dir", str(config_dir), "sync", "-p", str(workdir)],
            )

        assert result.exit_code == 0, result.output
        assert "Sync complete!" in result.output
        assert fake.tree() == {"a.txt": b"hello"}
        assert fake.closed

    def test_sync_speed_limits(self, runner, config_dir, workdir, credentials):
        """Test kB/s limits reach the engine as bytes per second."""
        with patch("pygrive.cli.DriveClient", return_value=FakeDriveClient()):
            with patch("pygrive.cli.SyncEngine") as mock_engine_class:
                mock_engine_class.return_value.sync.return_value = Mock(failed=[])
                result = runner.invoke(
                    main,
                    [
                        "--config-dir",
                        str(config_dir),
                        "sync",
                        "-p",
                        str(workdir),
                        "-U",
                        "50",
                        "-D",
                        "200",
                        "-s",
                        "docs",
                    ],
                )

        assert result.exit_code == 0, result.output
        _, options = mock_engine_class.return_value.sync.call_args.args
        assert options.upload_rate_limit == 50_000
        assert options.download_rate_limit == 200_000
        assert options.subdir_filter == "docs"

    def test_sync_json_dry_run(self, runner, config_dir, workdir, credentials):
        """Test --json prints the machine-readable result only."""
        (workdir / "a.txt").write_bytes(b"hello")
        fake = FakeDriveClient()

        with patch("pygrive.cli.DriveClient", return_value=fake):
            result = runner.invoke(
                main,
                [
                    "--config-dir",
                    str(config_dir),
                    "--json",
                    "sync",
                    "-p",
                    str(workdir),
                    "--dry-run",
                ],
            )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["dry_run"] is True
        assert data["stats"]["uploads"] == 1
        assert fake.tree() == {}

    def test_sync_failure_exit_code(self, runner, config_dir, workdir, credentials):
        """Test a failed path makes the command exit with 1."""
        (workdir / "a.txt").write_bytes(b"hello")
        fake = FakeDriveClient()
        fake.upload_errors["a.txt"] = GrivePermissionError("denied", 403)

        with patch("pygrive.cli.DriveClient", return_value=fake):
            result = runner.invoke(
                main,
                ["--config-dir", str(config_dir), "sync", "-p", str(workdir)],
            )

        assert result.exit_code == 1
        assert "a.txt" in result.output

    def test_sync_aborted(self, runner, config_dir, workdir, credentials):
        (workdir / "a.txt").write_bytes(b"hello")
        fake = FakeDriveClient()
        fake.upload_errors["a.txt"] = GriveAuthenticationError("revoked", 401)

        with patch("pygrive.cli.DriveClient", return_value=fake):
            result = runner.invoke(
                main,
                ["--config-dir", str(config_dir), "sync", "-p", str(workdir)],
            )

        assert result.exit_code == 1
        assert "Sync aborted" in result.output
        assert "a.txt: revoked" in result.output
        assert fake.closed
