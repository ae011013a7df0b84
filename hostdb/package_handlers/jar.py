"""Handlers for binaries distributed inside Maven JARs."""

import logging
from pathlib import Path

from hostdb.exceptions import ExtractionFailure
from hostdb.extractors import find_dir_named
from hostdb.models import DownloadableSource, Platform, SourceFormat
from hostdb.package_handlers.base import DatabaseHandler, Payload

logger = logging.getLogger(__name__)

# MariaDB4j only publishes x86_64 Linux binaries, so linux-arm64 has no mapping
MARIADB4J_PLATFORMS = {
    Platform.DARWIN_ARM64: "osx",
    Platform.DARWIN_X64: "osx",
    Platform.LINUX_X64: "linux64",
    Platform.WIN32_X64: "win64",
}


class Mariadb4jHandler(DatabaseHandler):
    """MariaDB4j JARs: ``ch/vorburger/mariadb4j/mariadb-<version>/<osx|linux64|win64>/``."""

    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        jar_platform = MARIADB4J_PLATFORMS.get(platform)
        if jar_platform is None:
            raise ExtractionFailure(f"MariaDB4j has no binaries for {platform}")

        extract_dir = work_dir / "extract"
        self.extractors.extract(archive, source.format, extract_dir)

        payload_dir = (
            extract_dir / "ch" / "vorburger" / "mariadb4j" / f"mariadb-{version}" / jar_platform
        )
        if not payload_dir.is_dir():
            logger.warning(f"Expected path not found, searching JAR for '{jar_platform}'")
            payload_dir = find_dir_named(extract_dir, jar_platform)

        logger.info(f"Found MariaDB4j binaries at: {payload_dir.relative_to(extract_dir)}")
        return Payload(payload_dir)


class ZonkyJarHandler(DatabaseHandler):
    """zonky.io embedded-postgres JARs wrapping a single ``.txz`` archive."""

    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        jar_dir = work_dir / "jar"
        self.extractors.extract(archive, source.format, jar_dir)

        txz_files = sorted(jar_dir.glob("*.txz"))
        if not txz_files:
            raise ExtractionFailure(f"No .txz file found in {archive.name}")
        logger.info(f"Found: {txz_files[0].name}")

        payload_dir = work_dir / "payload"
        self.extractors.extract(txz_files[0], SourceFormat.TAR_XZ, payload_dir)
        return Payload(payload_dir)
