"""Tests for the hostdb command line interface."""

import hashlib
import logging
import tarfile
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import make_response, write_database
from hostdb.cli import cli

MEILI_URL = "https://example.com/meilisearch-linux-amd64"

MEILI_YAML = """\
    name: meilisearch
    display_name: Meilisearch
    handler: single-binary
    binary_name: meilisearch
"""

VALKEY_YAML = """\
    name: valkey
    display_name: Valkey
    handler: prefixed-archive
    buildable_platforms:
      - linux-x64
    builder: script
"""


def meili_sources(checksum=None):
    return {
        "database": "meilisearch",
        "versions": {
            "1.33.1": {
                "linux-x64": {"url": MEILI_URL, "format": "binary", "sha256": checksum},
                "win32-x64": {"url": MEILI_URL + ".exe", "format": "binary", "sha256": None},
            }
        },
    }


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    write_database(tmp_path, "meilisearch", MEILI_YAML, meili_sources())
    write_database(
        tmp_path,
        "valkey",
        VALKEY_YAML,
        {
            "database": "valkey",
            "versions": {"9.0.1": {"linux-x64": {"sourceType": "build-required"}}},
        },
    )
    monkeypatch.setenv("HOSTDB_CONFIG_DIR", str(tmp_path / "config" / "databases"))
    monkeypatch.setenv("HOSTDB_BUILDS_DIR", str(tmp_path / "builds"))
    monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")
    monkeypatch.delenv("HOSTDB_LOG_LEVEL", raising=False)
    return tmp_path


@pytest.fixture
def runner():
    return CliRunner()


class TestRehostValidation:
    def test_invalid_version(self, runner, workspace):
        with patch("hostdb.cli.ConfigManager") as manager:
            result = runner.invoke(cli, ["rehost", "meilisearch", "--version", "1.33"])
        assert result.exit_code == 1
        assert "Invalid version format" in result.output
        manager.assert_not_called()

    def test_invalid_platform(self, runner, workspace):
        result = runner.invoke(
            cli, ["rehost", "meilisearch", "--version", "1.33.1", "--platform", "amiga"]
        )
        assert result.exit_code == 1
        assert "Invalid platform" in result.output
        assert "win32-x64" in result.output

    def test_unknown_database(self, runner, workspace):
        result = runner.invoke(
            cli, ["rehost", "oracle", "--version", "1.0.0", "--platform", "linux-x64"]
        )
        assert result.exit_code == 1
        assert "Unknown database: oracle" in result.output
        assert "meilisearch" in result.output

    def test_unknown_version(self, runner, workspace):
        result = runner.invoke(
            cli, ["rehost", "meilisearch", "--version", "9.9.9", "--platform", "linux-x64"]
        )
        assert result.exit_code == 1
        assert "Version 9.9.9 not found" in result.output

    def test_missing_version_option(self, runner, workspace):
        result = runner.invoke(cli, ["rehost", "meilisearch"])
        assert result.exit_code == 2


class TestRehostRun:
    def test_downloads_and_repackages(self, runner, workspace):
        output = workspace / "out"
        with patch(
            "hostdb.downloader.requests.Session.get",
            side_effect=lambda url, **kwargs: make_response(b"meili"),
        ):
            result = runner.invoke(
                cli,
                [
                    "rehost",
                    "meilisearch",
                    "--version",
                    "1.33.1",
                    "--platform",
                    "linux-x64",
                    "--output",
                    str(output),
                ],
            )

        assert result.exit_code == 0, result.output
        archive = output / "meilisearch-1.33.1-linux-x64.tar.gz"
        with tarfile.open(archive, "r:gz") as tar:
            assert tar.extractfile("meilisearch/meilisearch").read() == b"meili"
        assert "[OK]" in result.output

    def test_corrupt_download_exits_one(self, runner, workspace):
        write_database(
            workspace, "meilisearch", MEILI_YAML, meili_sources(hashlib.sha256(b"good").hexdigest())
        )
        with patch(
            "hostdb.downloader.requests.Session.get",
            side_effect=lambda url, **kwargs: make_response(b"evil"),
        ):
            result = runner.invoke(
                cli,
                [
                    "rehost",
                    "meilisearch",
                    "--version",
                    "1.33.1",
                    "--platform",
                    "linux-x64",
                    "--output",
                    str(workspace / "out"),
                ],
            )
        assert result.exit_code == 1
        assert "Checksum mismatch" in result.output
        assert not (workspace / "out" / "meilisearch-1.33.1-linux-x64.tar.gz").exists()

    def test_build_required_without_fallback_is_skipped(self, runner, workspace):
        result = runner.invoke(
            cli,
            [
                "rehost",
                "valkey",
                "--version",
                "9.0.1",
                "--platform",
                "linux-x64",
                "--output",
                str(workspace / "out"),
            ],
        )
        assert result.exit_code == 0
        assert "--build-fallback" in result.output

    def test_missing_build_script_fails_platform(self, runner, workspace):
        result = runner.invoke(
            cli,
            [
                "rehost",
                "valkey",
                "--version",
                "9.0.1",
                "--platform",
                "linux-x64",
                "--build-fallback",
                "--output",
                str(workspace / "out"),
            ],
        )
        assert result.exit_code == 1
        assert "Build script not found" in result.output


class TestOtherCommands:
    def test_list(self, runner, workspace):
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "Meilisearch (meilisearch)" in result.output
        assert "1.33.1: linux-x64, win32-x64" in result.output
        assert "9.0.1: linux-x64*" in result.output

    def test_checksums_rejects_conflicting_flags(self, runner, workspace):
        result = runner.invoke(cli, ["checksums", "meilisearch", "--force", "--verify"])
        assert result.exit_code == 1
        assert "cannot be combined" in result.output

    def test_checksums_populates(self, runner, workspace):
        with patch(
            "hostdb.downloader.requests.Session.get",
            side_effect=lambda url, **kwargs: make_response(b"meili"),
        ):
            result = runner.invoke(cli, ["checksums", "meilisearch"])
        assert result.exit_code == 0, result.output
        sources = (workspace / "builds" / "meilisearch" / "sources.json").read_text()
        assert hashlib.sha256(b"meili").hexdigest() in sources

    def test_log_level_option(self, runner, workspace):
        result = runner.invoke(cli, ["--log-level", "ERROR", "list"])
        assert result.exit_code == 0
        assert logging.getLogger().level == logging.ERROR
