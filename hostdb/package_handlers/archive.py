"""Handlers for vendor archives and bare executables."""

import logging
import shutil
from pathlib import Path

from hostdb.exceptions import ExtractionFailure
from hostdb.extractors import find_file, find_prefixed_dir
from hostdb.models import DownloadableSource, Platform, SourceFormat
from hostdb.package_handlers.base import DatabaseHandler, Payload

logger = logging.getLogger(__name__)


class PrefixedArchiveHandler(DatabaseHandler):
    """Archives that unpack into one versioned directory, e.g. ``mariadb-11.4.5-linux-systemd-x86_64/``.

    The directory is found by the configured prefix/suffix for the source
    type; an optional subpath reaches into bundles such as a macOS ``.app``.
    """

    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        extract_dir = work_dir / "extract"
        self.extractors.extract(archive, source.format, extract_dir)

        layout = self.config.layout_for(source.source_type)
        found = find_prefixed_dir(extract_dir, layout.prefix, layout.suffix)
        payload_dir = found / layout.subpath if layout.subpath else found

        if not payload_dir.is_dir():
            raise ExtractionFailure(
                f"Could not find {self.config.display_name} installation at "
                f"{payload_dir.relative_to(extract_dir)}"
            )

        logger.info(f"Found payload: {payload_dir.relative_to(extract_dir)}")
        return Payload(payload_dir)


class SingleBinaryHandler(DatabaseHandler):
    """Databases shipped as one executable (DuckDB, Meilisearch, SurrealDB, FerretDB)."""

    @property
    def binary_name(self) -> str:
        return self.config.binary_name or self.config.name

    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        extract_dir = work_dir / "extract"
        self.extractors.extract(archive, source.format, extract_dir)

        if source.format in (SourceFormat.GZ, SourceFormat.BINARY):
            files = [p for p in extract_dir.iterdir() if p.is_file()]
            if len(files) != 1:
                raise ExtractionFailure(
                    f"Expected a single executable from {archive.name}, found {len(files)}"
                )
            binary = files[0]
        else:
            binary = find_file(extract_dir, platform.executable_name(self.binary_name))

        return self.place_binary(binary, platform, work_dir)

    def place_binary(self, binary: Path, platform: Platform, work_dir: Path) -> Payload:
        """Copy an executable into a fresh payload under its canonical name.

        Also used for binaries produced by a cross-compiler.
        """
        payload_dir = work_dir / "payload"
        target_dir = payload_dir / self.config.binary_dir
        target_dir.mkdir(parents=True, exist_ok=True)

        target = target_dir / platform.executable_name(self.binary_name)
        shutil.copy2(binary, target)
        if not platform.is_windows:
            target.chmod(0o755)

        return Payload(payload_dir)


class FlatZipHandler(DatabaseHandler):
    """Zips of loose executables without a top-level folder (SQLite).

    Every extracted file is moved into ``bin/``.
    """

    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        extract_dir = work_dir / "extract"
        self.extractors.extract(archive, source.format, extract_dir)

        payload_dir = work_dir / "payload"
        bin_dir = payload_dir / "bin"
        bin_dir.mkdir(parents=True)

        files = sorted(p for p in extract_dir.iterdir() if p.is_file())
        if not files:
            raise ExtractionFailure(f"No files found in {archive.name}")

        for path in files:
            target = bin_dir / path.name
            shutil.move(path, target)
            if not platform.is_windows:
                target.chmod(0o755)

        logger.info(f"Moved {len(files)} files into bin/")
        return Payload(payload_dir)
