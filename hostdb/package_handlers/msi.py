"""Handler for Windows MSI installers (CouchDB)."""

import logging
import shutil
from pathlib import Path

from hostdb.exceptions import ExtractionFailure
from hostdb.models import DownloadableSource, Platform
from hostdb.package_handlers.base import DatabaseHandler, Payload

logger = logging.getLogger(__name__)

MSI_NOTE = "Contains MSI installer - extract with msiexec /a"

# Folders an administrative install is known to produce, most specific first
INSTALL_DIRS = [
    Path("Apache CouchDB"),
    Path("Apache") / "CouchDB",
    Path("CouchDB"),
    Path("Program Files") / "Apache CouchDB",
    Path("PFiles") / "Apache CouchDB",
]


class MsiHandler(DatabaseHandler):
    """Extracts an MSI with the first working tool and finds the install tree.

    When the host has no MSI tool at all, the installer itself becomes the
    payload and the provenance record says so.
    """

    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        if not self.extractors.msi_available:
            logger.warning("No MSI extraction tool available")
            logger.info("Packaging the MSI as-is for extraction on a Windows host")
            payload_dir = work_dir / "payload"
            payload_dir.mkdir(parents=True)
            shutil.copy2(archive, payload_dir / archive.name)
            return Payload(payload_dir, extras={"note": MSI_NOTE})

        extract_dir = work_dir / "extract"
        self.extractors.extract(archive, source.format, extract_dir)

        logger.info("Looking for installation in extracted MSI...")
        install_dir = self.find_install_dir(extract_dir)
        logger.info(f"Found installation at: {install_dir.relative_to(extract_dir)}")
        return Payload(install_dir)

    @staticmethod
    def find_install_dir(root: Path) -> Path:
        """Locate the installed tree inside an extracted MSI.

        Raises:
            ExtractionFailure: If no known folder or bin/+etc/ directory exists
        """
        for candidate in INSTALL_DIRS:
            if (root / candidate).is_dir():
                return root / candidate

        for path in sorted(root.rglob("*"), key=lambda p: (len(p.parts), str(p))):
            if path.is_dir() and (path / "bin").is_dir() and (path / "etc").is_dir():
                return path

        entries = ", ".join(sorted(p.name for p in root.iterdir())) or "<empty>"
        raise ExtractionFailure(
            f"Could not find installation in extracted MSI (found: {entries})"
        )
