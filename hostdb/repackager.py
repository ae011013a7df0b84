"""Repackager for creating the normalized ``<db>/`` archive."""

import gzip
import json
import os
import shutil
import stat
import tarfile
import tempfile
import time
import zipfile
from collections.abc import Iterator, Sequence
from pathlib import Path

from hostdb.checksum import calculate_hash
from hostdb.config import RunContext, log_success
from hostdb.models import METADATA_FILENAME, ProvenanceMetadata

# Earliest timestamp a zip entry can carry (1980-01-01)
ZIP_EPOCH = 315532800

# Leading bytes of shebang scripts, ELF and Mach-O (thin and universal) binaries
EXECUTABLE_MAGIC = (
    b"#!",
    b"\x7fELF",
    b"\xcf\xfa\xed\xfe",
    b"\xce\xfa\xed\xfe",
    b"\xca\xfe\xba\xbe",
)


def is_executable(path: Path) -> bool:
    """Whether a staged file is a program rather than data shipped beside one."""
    if path.suffix == ".sh" or path.stat().st_mode & 0o111:
        return True
    with open(path, "rb") as f:
        return f.read(4).startswith(EXECUTABLE_MAGIC)


class Repackager:
    """Assembles a staging tree and archives it with ``<db>/`` as the only top-level entry."""

    def __init__(self, context: RunContext):
        """Initialize repackager.

        Args:
            context: Run context; SOURCE_DATE_EPOCH clamps entry mtimes
        """
        self.logger = context.child("repackager")
        self.source_date_epoch = context.settings.source_date_epoch

    def repackage(
        self,
        payload_dir: Path,
        output_path: Path,
        metadata: ProvenanceMetadata,
        components: Sequence[Path] = (),
        jre_dir: Path | None = None,
    ) -> str:
        """Build the final archive for one platform.

        Args:
            payload_dir: Directory whose contents become ``<db>/``
            output_path: Final archive path (``.tar.gz`` or ``.zip``)
            metadata: Provenance record written as ``.hostdb-metadata.json``
            components: Extracted component roots whose ``bin/`` is merged in
            jre_dir: Java runtime copied to ``<db>/jre``

        Returns:
            SHA-256 of the written archive
        """
        platform = metadata.platform
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="hostdb-stage-") as staging:
            staging_root = Path(staging)
            db_dir = staging_root / metadata.name

            self.logger.info(f"Staging {metadata.name}/ from {payload_dir.name}")
            shutil.copytree(payload_dir, db_dir, symlinks=True)

            for component_dir in components:
                self._merge_bin(component_dir, db_dir / "bin")

            if jre_dir is not None:
                self.logger.info("Bundling Java runtime into jre/")
                shutil.copytree(jre_dir, db_dir / "jre", symlinks=True)

            if not platform.is_windows:
                self._set_executable(db_dir)

            # Written last so it describes the final contents
            self._write_metadata(db_dir, metadata)

            tmp_path = output_path.with_name(output_path.name + ".tmp")
            self.logger.info(f"Creating: {output_path.name}")
            try:
                if platform.is_windows:
                    self._write_zip(staging_root, metadata.name, tmp_path)
                else:
                    self._write_tar_gz(staging_root, metadata.name, tmp_path)
                os.replace(tmp_path, output_path)
            finally:
                tmp_path.unlink(missing_ok=True)

        sha256 = calculate_hash(output_path)
        size_mb = output_path.stat().st_size / 1024 / 1024
        log_success(self.logger, f"Created: {output_path} ({size_mb:.1f}MB)")
        self.logger.info(f"SHA256: {sha256}")
        return sha256

    def _merge_bin(self, component_dir: Path, bin_dir: Path) -> None:
        """Copy a component's ``bin/`` files into the shared ``bin/``."""
        source_bin = component_dir / "bin"
        if not source_bin.is_dir():
            self.logger.warning(f"No bin/ directory in {component_dir.name}")
            return

        bin_dir.mkdir(parents=True, exist_ok=True)
        copied = 0
        for path in sorted(source_bin.iterdir()):
            if path.is_file():
                shutil.copy2(path, bin_dir / path.name)
                copied += 1
        self.logger.info(f"Merged {copied} binaries from {component_dir.name}")

    def _set_executable(self, db_dir: Path) -> None:
        """Mark scripts and native binaries executable, leaving other files alone."""
        candidates = list(db_dir.glob("*.sh"))
        for bin_dir in (db_dir / "bin", db_dir / "jre" / "bin"):
            if bin_dir.is_dir():
                candidates.extend(bin_dir.iterdir())

        for path in candidates:
            if path.is_file() and not path.is_symlink() and is_executable(path):
                path.chmod(stat.S_IMODE(path.stat().st_mode) | 0o755)

    def _write_metadata(self, db_dir: Path, metadata: ProvenanceMetadata) -> None:
        with open(db_dir / METADATA_FILENAME, "w", encoding="utf-8") as f:
            json.dump(metadata.to_dict(), f, indent=2)
            f.write("\n")

    def _walk(self, root: Path) -> Iterator[Path]:
        """Yield ``root`` and everything below it in a stable order."""
        yield root
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            current = Path(dirpath)
            for name in sorted(dirnames + filenames):
                yield current / name

    def _clamp(self, mtime: float) -> int:
        if self.source_date_epoch is None:
            return int(mtime)
        return int(min(mtime, self.source_date_epoch))

    def _write_tar_gz(self, staging_root: Path, name: str, target: Path) -> None:
        with open(target, "wb") as raw, gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, mtime=0
        ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for path in self._walk(staging_root / name):
                info = tar.gettarinfo(path, path.relative_to(staging_root).as_posix())
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                info.mtime = self._clamp(info.mtime)
                if info.isfile():
                    with open(path, "rb") as f:
                        tar.addfile(info, f)
                else:
                    tar.addfile(info)

    def _write_zip(self, staging_root: Path, name: str, target: Path) -> None:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in self._walk(staging_root / name):
                info = zipfile.ZipInfo.from_file(path, path.relative_to(staging_root).as_posix())
                timestamp = max(self._clamp(path.stat().st_mtime), ZIP_EPOCH)
                info.date_time = time.gmtime(timestamp)[:6]
                if info.is_dir():
                    archive.writestr(info, b"")
                else:
                    info.compress_type = zipfile.ZIP_DEFLATED
                    with open(path, "rb") as src, archive.open(info, "w") as dst:
                        shutil.copyfileobj(src, dst)
