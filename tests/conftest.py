"""Shared fixtures and archive builders for the hostdb tests."""

import io
import json
import tarfile
import textwrap
import zipfile
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from hostdb.config import RunContext, Settings


def make_tar_gz(path: Path, files: dict[str, bytes], modes: dict[str, int] | None = None) -> Path:
    """Write a tar.gz holding ``files`` (archive name -> content)."""
    modes = modes or {}
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = modes.get(name, 0o644)
            tar.addfile(info, io.BytesIO(content))
    return path


def make_tar_xz(path: Path, files: dict[str, bytes]) -> Path:
    with tarfile.open(path, "w:xz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return path


def make_zip(path: Path, files: dict[str, bytes], modes: dict[str, int] | None = None) -> Path:
    """Write a zip holding ``files``, recording Unix modes in the external attributes."""
    modes = modes or {}
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in files.items():
            info = zipfile.ZipInfo(name, date_time=(2024, 1, 1, 0, 0, 0))
            info.external_attr = (0o100000 | modes.get(name, 0o644)) << 16
            archive.writestr(info, content)
    return path


def make_corrupt_zip(path: Path, name: str, content: bytes) -> Path:
    """Write a deflated zip whose compressed stream starts with an invalid block type.

    The central directory stays intact, so opening succeeds and decompression
    fails with ``zlib.error``.
    """
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(name, content)
    with zipfile.ZipFile(path) as archive:
        header_offset = archive.getinfo(name).header_offset

    data = bytearray(path.read_bytes())
    name_length = int.from_bytes(data[header_offset + 26 : header_offset + 28], "little")
    extra_length = int.from_bytes(data[header_offset + 28 : header_offset + 30], "little")
    data[header_offset + 30 + name_length + extra_length] = 0xFF
    path.write_bytes(bytes(data))
    return path


def make_response(content: bytes, status_code: int = 200, chunk_size: int = 1024) -> Mock:
    """Mock streamed ``requests`` response."""
    response = Mock()
    response.status_code = status_code
    response.headers = {"content-length": str(len(content))}
    if status_code >= 400:
        response.raise_for_status = Mock(
            side_effect=requests.HTTPError(f"{status_code} Client Error")
        )
    else:
        response.raise_for_status = Mock()
    response.iter_content = Mock(
        return_value=[content[i : i + chunk_size] for i in range(0, len(content), chunk_size)]
    )
    return response


def write_database(
    root: Path, name: str, config_yaml: str, sources: dict, build_script: str | None = None
) -> None:
    """Lay out config/databases/<name>.yaml and builds/<name>/sources.json under ``root``."""
    config_dir = root / "config" / "databases"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / f"{name}.yaml").write_text(textwrap.dedent(config_yaml))

    build_dir = root / "builds" / name
    build_dir.mkdir(parents=True, exist_ok=True)
    (build_dir / "sources.json").write_text(json.dumps(sources, indent=2))
    if build_script is not None:
        script = build_dir / "build-local.sh"
        script.write_text(build_script)
        script.chmod(0o755)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        output_dir=tmp_path / "dist",
        config_dir=tmp_path / "config" / "databases",
        builds_dir=tmp_path / "builds",
        source_date_epoch=1700000000,
    )


@pytest.fixture
def context(settings):
    return RunContext(settings)
