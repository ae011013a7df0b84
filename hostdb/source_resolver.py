"""Resolves source descriptors for (version, platform) pairs."""

import json
import logging
from pathlib import Path

from hostdb.exceptions import ConfigurationError, SourceNotFound
from hostdb.models import (
    ComponentEntry,
    DownloadableSource,
    HashAlgorithm,
    Platform,
    SourceEntry,
    Sources,
    validate_version,
)

logger = logging.getLogger(__name__)


class SourceResolver:
    """Read-only lookup over one database's sources.json."""

    def __init__(self, sources: Sources):
        self.sources = sources

    @classmethod
    def load(
        cls, sources_path: Path, default_algorithm: HashAlgorithm = HashAlgorithm.SHA256
    ) -> "SourceResolver":
        """Load and parse a sources.json file.

        Raises:
            ConfigurationError: If the file is missing or not valid JSON
        """
        try:
            with open(sources_path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Sources file not found: {sources_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Failed to parse {sources_path}: invalid JSON ({e})"
            ) from e

        sources = Sources.from_json(data, default_algorithm)
        logger.debug(
            f"Loaded {len(sources.versions)} versions for {sources.database} "
            f"from {sources_path}"
        )
        return cls(sources)

    @property
    def available_versions(self) -> list[str]:
        return list(self.sources.versions)

    def require_version(self, version: str) -> dict[Platform, SourceEntry]:
        """Return the platform map for a version.

        Raises:
            InvalidArgument: If the version is malformed
            SourceNotFound: If sources.json has no such version
        """
        validate_version(version)
        entries = self.sources.versions.get(version)
        if entries is None:
            raise SourceNotFound(
                f"Version {version} not found in sources.json. "
                f"Available versions: {', '.join(self.available_versions)}"
            )
        return entries

    def resolve(self, version: str, platform: Platform) -> SourceEntry | None:
        """Look up the source for one platform; None when the platform has none."""
        return self.require_version(version).get(platform)

    def components_for(self, platform: Platform) -> list[tuple[ComponentEntry, DownloadableSource]]:
        """Auxiliary components that have a download for this platform."""
        return [
            (component, component.platforms[platform])
            for component in self.sources.components.values()
            if platform in component.platforms
        ]
