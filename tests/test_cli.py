"""Tests for snowball-sync CLI."""

import re
from unittest.mock import patch

import pytest
import typer
import yaml
from typer.testing import CliRunner

from snowball_sync import __version__
from snowball_sync.cli import (
    _display_results,
    _load_and_configure,
    _resolve_root,
    _validate_configuration,
    app,
    error_msg,
    format_file_count,
    success_msg,
)
from snowball_sync.config import Config


# Helper: strip ANSI escape sequences from CLI output for stable assertions
ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_RE.sub("", text)


@pytest.fixture
def config_path(tmp_path):
    """Isolate tests from the local user config file."""
    path = tmp_path / "home" / ".snowball-sync" / "config.yaml"
    with patch("snowball_sync.cli.get_config_path", return_value=path):
        yield path


@pytest.fixture
def source_tree(tmp_path):
    source = tmp_path / "source"
    (source / "sub").mkdir(parents=True)
    (source / "big.tif").write_bytes(b"B" * 2048)
    (source / "sub" / "small.txt").write_bytes(b"small")
    return source


class TestMessageHelpers:
    """Test message formatting helpers."""

    def test_error_msg(self):
        assert error_msg("boom") == "[red]boom[/red]"

    def test_success_msg(self):
        assert success_msg("done") == "[green]done[/green]"

    def test_format_file_count(self):
        assert format_file_count(3, "Uploaded") == "\nUploaded 3 file(s)"


class TestConfigurationHelpers:
    """Test configuration loading and validation."""

    def test_saved_defaults_applied(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(yaml.safe_dump({"profile": "saved", "endpoint": "10.0.0.5", "concurrency": 7}))

        config = _load_and_configure()

        assert config.aws.profile == "saved"
        assert config.aws.endpoint == "10.0.0.5"
        assert config.upload.concurrency == 7

    def test_command_line_overrides_saved(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(yaml.safe_dump({"profile": "saved", "concurrency": 7}))

        config = _load_and_configure(profile="cli", concurrency=2, verbose=True)

        assert config.aws.profile == "cli"
        assert config.upload.concurrency == 2
        assert config.verbose is True

    def test_zero_concurrency_is_kept(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(yaml.safe_dump({"concurrency": 7}))

        config = _load_and_configure(concurrency=0)

        assert config.upload.concurrency == 0

    def test_invalid_saved_config_exits(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("invalid: yaml: content: [")

        with pytest.raises(typer.Exit):
            _load_and_configure()

    def test_validate_requires_target(self):
        with pytest.raises(typer.Exit):
            _validate_configuration(Config(), None)

    def test_validate_rejects_zero_concurrency(self):
        config = Config()
        config.upload.concurrency = 0

        with pytest.raises(typer.Exit):
            _validate_configuration(config, "s3://bucket")

    def test_resolve_root(self, tmp_path):
        assert _resolve_root("s3://bucket/prefix") == "s3://bucket/prefix"
        assert _resolve_root(str(tmp_path / "a" / ".." / "b")) == str((tmp_path / "b").resolve())


class TestDisplayResults:
    def test_failures_exit_with_error(self):
        result = {"files_uploaded": 1, "batches_skipped": 0, "failures": ["a.tif"], "problems": []}

        with pytest.raises(typer.Exit) as exc_info:
            _display_results(result)

        assert exc_info.value.exit_code == 1

    def test_success(self):
        _display_results({"files_uploaded": 1, "batches_skipped": 0, "failures": [], "problems": []})


class TestCommands:
    """Test the commands through CliRunner."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_version(self):
        result = self.runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"snowball-sync {__version__}" in result.stdout

    def test_help_lists_commands(self):
        result = self.runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        output = strip_ansi(result.stdout)
        for command in ["manifest", "hash", "sync", "validate", "init"]:
            assert command in output

    def test_sync_without_target(self, config_path, tmp_path):
        result = self.runner.invoke(app, ["sync", str(tmp_path / "data.manifest.json")])

        assert result.exit_code == 1
        assert "--target is required" in strip_ansi(result.stdout)

    def test_sync_rejects_zero_concurrency(self, config_path, tmp_path):
        result = self.runner.invoke(
            app, ["sync", str(tmp_path / "data.manifest.json"), "--target", str(tmp_path / "target"), "--concurrency", "0"]
        )

        assert result.exit_code == 1
        assert "--concurrency must be at least 1" in strip_ansi(result.stdout)

    def test_sync_missing_manifest(self, config_path, tmp_path):
        result = self.runner.invoke(
            app, ["sync", str(tmp_path / "data.manifest.json"), "--target", str(tmp_path / "target")]
        )

        assert result.exit_code == 1
        assert "Sync failed" in strip_ansi(result.stdout)

    def test_manifest_sync_validate(self, config_path, source_tree, tmp_path):
        manifest_path = str(tmp_path / "source.manifest.json")
        target = tmp_path / "target"

        result = self.runner.invoke(app, ["manifest", str(source_tree), "--output", manifest_path])
        assert result.exit_code == 0
        assert "Listed 2 file(s)" in strip_ansi(result.stdout)

        result = self.runner.invoke(app, ["sync", manifest_path, "--target", str(target), "--filter", "0.001"])
        assert result.exit_code == 0, result.stdout
        assert "Sync completed successfully" in strip_ansi(result.stdout)
        assert (target / "big.tif").read_bytes() == b"B" * 2048
        assert (target / "batch-0.tar.gz").exists()

        result = self.runner.invoke(app, ["validate", manifest_path])
        assert result.exit_code == 0
        assert "All hashes match" in strip_ansi(result.stdout)

    def test_sync_dry_run(self, config_path, source_tree, tmp_path):
        manifest_path = str(tmp_path / "source.manifest.json")
        self.runner.invoke(app, ["manifest", str(source_tree), "--output", manifest_path])

        result = self.runner.invoke(
            app, ["sync", manifest_path, "--target", str(tmp_path / "target"), "--filter", "0.001", "--dry-run"]
        )

        assert result.exit_code == 0
        output = strip_ansi(result.stdout)
        assert "Upload plan" in output
        assert "Dry run completed" in output
        assert not (tmp_path / "target").exists()

    def test_hash_then_validate(self, config_path, source_tree, tmp_path):
        manifest_path = str(tmp_path / "source.manifest.json")
        self.runner.invoke(app, ["manifest", str(source_tree), "--output", manifest_path])

        result = self.runner.invoke(app, ["validate", manifest_path])
        assert result.exit_code == 1
        assert "2 missing" in strip_ansi(result.stdout)

        result = self.runner.invoke(app, ["hash", manifest_path, "--concurrency", "2"])
        assert result.exit_code == 0
        assert "Hashed 2 file(s)" in strip_ansi(result.stdout)

        result = self.runner.invoke(app, ["validate", manifest_path])
        assert result.exit_code == 0

    def test_init_saves_defaults(self, config_path):
        result = self.runner.invoke(app, ["init", "--profile", "snowball", "--endpoint", "10.0.0.5"])

        assert result.exit_code == 0
        assert "Configuration saved" in strip_ansi(result.stdout)
        assert yaml.safe_load(config_path.read_text()) == {"profile": "snowball", "endpoint": "10.0.0.5"}

    def test_init_keeps_existing_values(self, config_path):
        self.runner.invoke(app, ["init", "--profile", "snowball"])
        self.runner.invoke(app, ["init", "--concurrency", "8"])

        assert yaml.safe_load(config_path.read_text()) == {"profile": "snowball", "concurrency": 8}

    def test_hash_rejects_zero_concurrency(self, config_path, tmp_path):
        result = self.runner.invoke(app, ["hash", str(tmp_path / "data.manifest.json"), "--concurrency", "0"])

        assert result.exit_code == 1
        assert "--concurrency must be at least 1" in strip_ansi(result.stdout)
