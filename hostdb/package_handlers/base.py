"""Abstract base class for database source handlers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostdb.database_config import DatabaseConfig
from hostdb.extractors import ExtractorSet
from hostdb.models import DownloadableSource, Platform


@dataclass
class Payload:
    """A directory ready to become ``<db>/`` in the output archive.

    Attributes:
        directory: Directory whose contents are copied into ``<db>/``
        extras: Provenance fields only known after unpacking
    """

    directory: Path
    extras: dict[str, Any] = field(default_factory=dict)


class DatabaseHandler(ABC):
    """Base class for source handlers.

    Each kind of upstream artifact (vendor archive, JAR, MSI, bare binary)
    implements this interface to define how the verified download becomes a
    payload directory.

    Attributes:
        config: Database configuration loaded from YAML
        extractors: Extraction capabilities probed for this run
    """

    def __init__(self, config: DatabaseConfig, extractors: ExtractorSet) -> None:
        """Initialize handler with database configuration.

        Args:
            config: Database configuration defining layout and metadata
            extractors: Extractor table selected at startup
        """
        self.config = config
        self.extractors = extractors

    @abstractmethod
    def prepare_payload(
        self,
        archive: Path,
        source: DownloadableSource,
        version: str,
        platform: Platform,
        work_dir: Path,
    ) -> Payload:
        """Unpack a verified download and locate its payload.

        Args:
            archive: Verified download in the cache
            source: Source descriptor the download came from
            version: Validated version string
            platform: Target platform
            work_dir: Scratch directory owned by the caller

        Returns:
            Payload for the repackager

        Raises:
            ExtractionFailure: If the expected layout is not found
        """

    def metadata_extras(self, source: DownloadableSource) -> dict[str, Any]:
        """Database-specific provenance fields for this source."""
        extras: dict[str, Any] = {}
        source_url = self.config.source_urls.get(source.source_type)
        if source_url:
            extras["sourceUrl"] = source_url
        extras.update(self.config.metadata)
        return extras
