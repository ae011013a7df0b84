"""Unit tests for repackager module."""

import json
import stat
import tarfile
import zipfile
from datetime import UTC, datetime

import pytest

from hostdb.checksum import calculate_hash
from hostdb.config import RunContext, Settings
from hostdb.models import METADATA_FILENAME, Platform, ProvenanceMetadata
from hostdb.repackager import ZIP_EPOCH, Repackager


def metadata_for(platform: Platform, **extras) -> ProvenanceMetadata:
    return ProvenanceMetadata(
        name="questdb",
        version="9.2.3",
        platform=platform,
        source="official",
        rehosted_at=datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC),
        extras=extras,
    )


@pytest.fixture
def payload(tmp_path):
    root = tmp_path / "payload"
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "questdb.sh").write_text("#!/bin/sh\n")
    (root / "conf").mkdir()
    (root / "conf" / "server.conf").write_text("http.enabled=true\n")
    (root / "run.sh").write_text("#!/bin/sh\n")
    return root


@pytest.fixture
def repackager(context):
    return Repackager(context)


def tar_names(path):
    with tarfile.open(path, "r:gz") as tar:
        return tar.getnames()


class TestTarGz:
    def test_single_top_level_directory(self, repackager, payload, tmp_path):
        output = tmp_path / "dist" / "questdb-9.2.3-linux-x64.tar.gz"
        sha256 = repackager.repackage(payload, output, metadata_for(Platform.LINUX_X64))

        assert sha256 == calculate_hash(output)
        names = tar_names(output)
        assert {n.split("/")[0] for n in names} == {"questdb"}
        assert "questdb/conf/server.conf" in names
        assert f"questdb/{METADATA_FILENAME}" in names
        assert not (tmp_path / "dist" / "questdb-9.2.3-linux-x64.tar.gz.tmp").exists()

    def test_metadata_contents(self, repackager, payload, tmp_path):
        output = tmp_path / "out.tar.gz"
        repackager.repackage(
            payload, output, metadata_for(Platform.LINUX_X64, jre_bundled="adoptium-21")
        )
        with tarfile.open(output, "r:gz") as tar:
            raw = tar.extractfile(f"questdb/{METADATA_FILENAME}").read()

        assert raw.endswith(b"\n")
        record = json.loads(raw)
        assert record["name"] == "questdb"
        assert record["platform"] == "linux-x64"
        assert record["jre_bundled"] == "adoptium-21"
        assert record["rehosted_by"] == "hostdb"
        assert record["rehosted_at"] == "2023-11-14T22:13:20Z"

    def test_executable_bits(self, repackager, payload, tmp_path):
        output = tmp_path / "out.tar.gz"
        repackager.repackage(payload, output, metadata_for(Platform.DARWIN_ARM64))
        with tarfile.open(output, "r:gz") as tar:
            modes = {m.name: stat.S_IMODE(m.mode) for m in tar.getmembers()}

        assert modes["questdb/bin/questdb.sh"] == 0o755
        assert modes["questdb/run.sh"] == 0o755
        assert modes["questdb/conf/server.conf"] & 0o111 == 0

    def test_only_programs_in_bin_become_executable(self, repackager, payload, tmp_path):
        (payload / "bin" / "questdb").write_bytes(b"\x7fELF\x02\x01")
        (payload / "bin" / "questdb.pdb").write_bytes(b"Microsoft C/C++ MSF")
        (payload / "bin" / "README").write_text("Start with questdb.sh\n")
        output = tmp_path / "out.tar.gz"
        repackager.repackage(payload, output, metadata_for(Platform.LINUX_X64))
        with tarfile.open(output, "r:gz") as tar:
            modes = {m.name: stat.S_IMODE(m.mode) for m in tar.getmembers()}

        assert modes["questdb/bin/questdb"] == 0o755
        assert modes["questdb/bin/questdb.pdb"] & 0o111 == 0
        assert modes["questdb/bin/README"] & 0o111 == 0

    def test_normalized_ownership_and_mtime(self, repackager, payload, tmp_path):
        output = tmp_path / "out.tar.gz"
        repackager.repackage(payload, output, metadata_for(Platform.LINUX_X64))
        with tarfile.open(output, "r:gz") as tar:
            for member in tar.getmembers():
                assert member.uid == 0
                assert member.gid == 0
                assert member.mtime <= 1700000000

    def test_byte_identical_across_runs(self, repackager, payload, tmp_path):
        first = tmp_path / "a" / "questdb.tar.gz"
        second = tmp_path / "b" / "questdb.tar.gz"
        repackager.repackage(payload, first, metadata_for(Platform.LINUX_X64))
        repackager.repackage(payload, second, metadata_for(Platform.LINUX_X64))
        assert first.read_bytes() == second.read_bytes()

    def test_symlinks_are_kept(self, repackager, payload, tmp_path):
        (payload / "bin" / "questdb").symlink_to("questdb.sh")
        output = tmp_path / "out.tar.gz"
        repackager.repackage(payload, output, metadata_for(Platform.LINUX_X64))
        with tarfile.open(output, "r:gz") as tar:
            link = tar.getmember("questdb/bin/questdb")
        assert link.issym()
        assert link.linkname == "questdb.sh"

    def test_replaces_existing_output(self, repackager, payload, tmp_path):
        output = tmp_path / "out.tar.gz"
        output.write_bytes(b"stale")
        repackager.repackage(payload, output, metadata_for(Platform.LINUX_X64))
        assert tarfile.is_tarfile(output)


class TestZip:
    def test_windows_zip(self, repackager, payload, tmp_path):
        output = tmp_path / "questdb-9.2.3-win32-x64.zip"
        repackager.repackage(payload, output, metadata_for(Platform.WIN32_X64))

        with zipfile.ZipFile(output) as archive:
            names = archive.namelist()
            assert archive.testzip() is None
            record = json.loads(archive.read(f"questdb/{METADATA_FILENAME}"))

        assert {n.split("/")[0] for n in names} == {"questdb"}
        assert "questdb/bin/questdb.sh" in names
        assert record["platform"] == "win32-x64"

    def test_zip_timestamps_are_clamped(self, payload, tmp_path):
        repackager = Repackager(RunContext(Settings(source_date_epoch=0)))
        output = tmp_path / "out.zip"
        repackager.repackage(payload, output, metadata_for(Platform.WIN32_X64))
        with zipfile.ZipFile(output) as archive:
            for info in archive.infolist():
                assert info.date_time == (1980, 1, 1, 0, 0, 0)
        assert ZIP_EPOCH == 315532800


class TestBundling:
    def test_components_merge_into_bin(self, repackager, payload, tmp_path):
        mongosh = tmp_path / "mongosh-2.5.10-linux-x64"
        (mongosh / "bin").mkdir(parents=True)
        (mongosh / "bin" / "mongosh").write_bytes(b"shell")
        tools = tmp_path / "mongodb-database-tools"
        (tools / "bin").mkdir(parents=True)
        (tools / "bin" / "mongodump").write_bytes(b"dump")
        (tools / "LICENSE").write_text("x")

        output = tmp_path / "out.tar.gz"
        repackager.repackage(
            payload, output, metadata_for(Platform.LINUX_X64), components=[mongosh, tools]
        )
        names = tar_names(output)
        assert "questdb/bin/mongosh" in names
        assert "questdb/bin/mongodump" in names
        assert "questdb/LICENSE" not in names

    def test_component_without_bin_is_skipped(self, repackager, payload, tmp_path):
        empty = tmp_path / "empty-component"
        empty.mkdir()
        output = tmp_path / "out.tar.gz"
        repackager.repackage(payload, output, metadata_for(Platform.LINUX_X64), components=[empty])
        assert "questdb/bin/questdb.sh" in tar_names(output)

    def test_jre_bundled(self, repackager, payload, tmp_path):
        jre = tmp_path / "jdk-21.0.5+11-jre"
        (jre / "bin").mkdir(parents=True)
        (jre / "bin" / "java").write_bytes(b"\x7fELF java")
        (jre / "lib").mkdir()
        (jre / "lib" / "modules").write_bytes(b"mods")

        output = tmp_path / "out.tar.gz"
        repackager.repackage(payload, output, metadata_for(Platform.DARWIN_X64), jre_dir=jre)
        with tarfile.open(output, "r:gz") as tar:
            java = tar.getmember("questdb/jre/bin/java")
            assert stat.S_IMODE(java.mode) == 0o755
            assert "questdb/jre/lib/modules" in tar.getnames()
