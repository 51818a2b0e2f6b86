"""CLI integration tests for VoxGate Recorder."""

import pytest
from typer.testing import CliRunner
from voxgate_recorder.cli import app

runner = CliRunner()

S3_YAML = """
s3:
  bucket: my-bucket
  endpoint_url: https://s3.example.test
  region: us-east-1
  access_key: a
  secret_key: b
"""


@pytest.fixture
def clean_config(tmp_path, monkeypatch):
    """Run in a temporary directory so that existing workspace config is ignored."""
    monkeypatch.chdir(tmp_path)
    from voxgate_recorder.cli import commands
    # recreate app_config so it reads from the new cwd
    monkeypatch.setattr(commands, "app_config", commands.AppConfig())
    return tmp_path


def _reload_config(monkeypatch):
    from voxgate_recorder.cli import commands
    monkeypatch.setattr(commands, "app_config", commands.AppConfig())


def test_help_command():
    """Test help command."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "record" in result.stdout
    assert "list-devices" in result.stdout
    assert "status" in result.stdout


def test_record_help_shows_capture_options():
    """Test record command exposes storage, detection and capture options."""
    result = runner.invoke(app, ["record", "--help"])
    assert result.exit_code == 0
    for option in (
        "--mode",
        "--local-directory",
        "--enable-screenshot",
        "--enable-webcam",
        "--threshold",
        "--release-grace",
        "--max-retries",
    ):
        assert option in result.stdout


def test_list_devices_command(monkeypatch):
    """Test list-devices command."""
    from voxgate_recorder.core.recording import RecordingEngine

    devices = [
        {"id": 0, "name": "USB Mic", "driver": "usb", "channels": 1, "rate": 48000, "is_default": True},
    ]
    monkeypatch.setattr(RecordingEngine, "list_devices", staticmethod(lambda driver_filter=None: devices))

    result = runner.invoke(app, ["list-devices", "--verbose"])
    assert result.exit_code == 0
    assert "USB Mic" in result.stdout
    assert "DEFAULT" in result.stdout


def test_list_devices_failure_exits_nonzero(monkeypatch):
    from voxgate_recorder.core.recording import RecordingEngine

    def broken(driver_filter=None):
        raise OSError("no audio backend")

    monkeypatch.setattr(RecordingEngine, "list_devices", staticmethod(broken))

    result = runner.invoke(app, ["list-devices", "--verbose"])
    assert result.exit_code == 1
    assert "no audio backend" in result.stdout


def test_status_command(clean_config):
    """Test status command without S3 configuration."""
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Storage not configured" in result.stdout
    assert "50.0 dB" in result.stdout


def test_status_local_directory(clean_config):
    target = clean_config / "out"
    target.mkdir()
    result = runner.invoke(app, ["status", "--mode", "local", "--local-directory", str(target)])
    assert result.exit_code == 0
    assert "Storage available" in result.stdout


def test_status_does_not_create_local_directory(clean_config):
    target = clean_config / "not-yet"
    result = runner.invoke(app, ["status", "--mode", "local", "--local-directory", str(target)])
    assert result.exit_code == 0
    assert "Storage not reachable" in result.stdout
    assert not target.exists()


def test_status_with_s3_available(clean_config, monkeypatch):
    """Status should report available when the bucket check succeeds."""
    (clean_config / ".voxgate-recorder.yml").write_text(S3_YAML, encoding="utf-8")
    _reload_config(monkeypatch)

    from voxgate_recorder.core.s3_upload import S3StorageAdapter

    monkeypatch.setattr(S3StorageAdapter, "check", lambda self: True)

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Storage available" in result.stdout
    assert "my-bucket" in result.stdout


def test_status_with_s3_unreachable(clean_config, monkeypatch):
    """Status should warn when the bucket check fails."""
    (clean_config / ".voxgate-recorder.yml").write_text(S3_YAML, encoding="utf-8")
    _reload_config(monkeypatch)

    from voxgate_recorder.core.s3_upload import S3StorageAdapter

    monkeypatch.setattr(S3StorageAdapter, "check", lambda self: False)

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Storage not reachable" in result.stdout


def test_record_without_s3_credentials_fails(clean_config):
    result = runner.invoke(app, ["record", "--mode", "s3", "--no-meter"])
    assert result.exit_code == 1
    assert "Missing required S3 configuration fields" in result.stdout


def test_record_rejects_unknown_mode(clean_config):
    result = runner.invoke(app, ["record", "--mode", "ftp", "--no-meter"])
    assert result.exit_code == 1
    assert "Invalid storage mode" in result.stdout


def test_record_rejects_invalid_image_quality(clean_config):
    result = runner.invoke(
        app,
        ["record", "--mode", "local", "--local-directory", str(clean_config / "out"), "--image-quality", "0"],
    )
    assert result.exit_code == 1
    assert "image_quality" in result.stdout
