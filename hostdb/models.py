"""Data models for hostdb."""

import platform as host_platform
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from hostdb.exceptions import ConfigurationError, InvalidArgument

REHOSTED_BY = "hostdb"
METADATA_FILENAME = ".hostdb-metadata.json"

VERSION_PATTERN = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+$")


def validate_version(value: str) -> str:
    """Validate a version string before it reaches a path, URL or command.

    Args:
        value: Candidate version (e.g., "11.4.5")

    Returns:
        The version, unchanged

    Raises:
        InvalidArgument: If the value is not a numeric X.Y.Z triplet
    """
    if not isinstance(value, str) or not VERSION_PATTERN.fullmatch(value):
        raise InvalidArgument(
            f"Invalid version format: {value!r}. "
            "Version must be in format: X.Y.Z (e.g., 11.4.5)"
        )
    return value


class Platform(StrEnum):
    """The five supported OS/architecture targets."""

    LINUX_X64 = "linux-x64"
    LINUX_ARM64 = "linux-arm64"
    DARWIN_X64 = "darwin-x64"
    DARWIN_ARM64 = "darwin-arm64"
    WIN32_X64 = "win32-x64"

    @classmethod
    def parse(cls, value: str) -> "Platform":
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise InvalidArgument(
                f"Invalid platform: {value!r}. Valid platforms: {valid}"
            ) from None

    @classmethod
    def detect(cls) -> "Platform":
        """Map the host operating system and CPU to a platform."""
        system = host_platform.system().lower()
        machine = host_platform.machine().lower()

        os_name = {"linux": "linux", "darwin": "darwin", "windows": "win32"}.get(
            system
        )
        arch = {
            "x86_64": "x64",
            "amd64": "x64",
            "arm64": "arm64",
            "aarch64": "arm64",
        }.get(machine)

        if os_name is None or arch is None:
            raise InvalidArgument(f"Unsupported platform: {system}-{machine}")
        return cls.parse(f"{os_name}-{arch}")

    @property
    def is_windows(self) -> bool:
        return self is Platform.WIN32_X64

    @property
    def is_darwin(self) -> bool:
        return self.value.startswith("darwin")

    @property
    def is_linux(self) -> bool:
        return self.value.startswith("linux")

    @property
    def archive_extension(self) -> str:
        return "zip" if self.is_windows else "tar.gz"

    def executable_name(self, name: str) -> str:
        return f"{name}.exe" if self.is_windows else name


class SourceFormat(StrEnum):
    """Formats a downloadable source can come in."""

    TAR_GZ = "tar.gz"
    TAR_XZ = "tar.xz"
    ZIP = "zip"
    JAR = "jar"
    MSI = "msi"
    GZ = "gz"
    BINARY = "binary"


class SourceType(StrEnum):
    """Where an artifact comes from."""

    OFFICIAL = "official"
    MARIADB4J = "mariadb4j"
    ZONKY = "zonky"
    REDIS_WINDOWS = "redis-windows"
    NEIGHBOURHOODIE = "neighbourhoodie"
    BUILD_REQUIRED = "build-required"
    DOCKER_EXTRACT = "docker-extract"


BUILD_SOURCE_TYPES = frozenset({SourceType.BUILD_REQUIRED, SourceType.DOCKER_EXTRACT})


class HashAlgorithm(StrEnum):
    """Content hash algorithms used by sources.json checksums."""

    SHA256 = "sha256"
    SHA3_256 = "sha3-256"

    @property
    def json_key(self) -> str:
        """Key holding this algorithm's checksum in sources.json."""
        return self.value.replace("-", "_")

    @property
    def hashlib_name(self) -> str:
        return self.value.replace("-", "_")


@dataclass(frozen=True)
class DownloadableSource:
    """A prebuilt artifact that can be fetched over HTTP."""

    url: str
    format: SourceFormat
    checksum: str | None = None
    algorithm: HashAlgorithm = HashAlgorithm.SHA256
    source_type: SourceType = SourceType.OFFICIAL

    @property
    def download_extension(self) -> str:
        return self.format.value


@dataclass(frozen=True)
class BuildRequiredSource:
    """No prebuilt binary exists; the artifact must be built."""

    note: str | None = None
    source_type: SourceType = SourceType.BUILD_REQUIRED


SourceEntry = DownloadableSource | BuildRequiredSource


def parse_source_entry(
    data: dict[str, Any], default_algorithm: HashAlgorithm = HashAlgorithm.SHA256
) -> SourceEntry:
    """Create a SourceEntry from one sources.json platform entry.

    Args:
        data: Raw entry, e.g. {"url": ..., "format": "tar.gz", "sha256": ...}
        default_algorithm: Algorithm used when the entry names none

    Returns:
        DownloadableSource or BuildRequiredSource

    Raises:
        ConfigurationError: If the entry is malformed
    """
    try:
        source_type = SourceType(data.get("sourceType", SourceType.OFFICIAL.value))

        if "url" not in data:
            if source_type not in BUILD_SOURCE_TYPES:
                raise ConfigurationError(
                    f"Source entry without url must be build-required: {data}"
                )
            return BuildRequiredSource(note=data.get("note"), source_type=source_type)

        if "sha3_256" in data:
            algorithm = HashAlgorithm.SHA3_256
        elif "sha256" in data:
            algorithm = HashAlgorithm.SHA256
        else:
            algorithm = default_algorithm

        return DownloadableSource(
            url=data["url"],
            format=SourceFormat(data["format"]),
            checksum=data.get(algorithm.json_key) or None,
            algorithm=algorithm,
            source_type=source_type,
        )
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid source entry {data}: {e}") from e


@dataclass(frozen=True)
class ComponentEntry:
    """An auxiliary download bundled next to the server (e.g. mongosh)."""

    name: str
    version: str
    description: str
    dir_prefix: str
    binaries: list[str] = field(default_factory=list)
    platforms: dict[Platform, DownloadableSource] = field(default_factory=dict)

    @classmethod
    def from_json(
        cls,
        name: str,
        data: dict[str, Any],
        default_algorithm: HashAlgorithm = HashAlgorithm.SHA256,
    ) -> "ComponentEntry":
        platforms = {}
        for platform_name, entry in data.get("platforms", {}).items():
            source = parse_source_entry(entry, default_algorithm)
            if not isinstance(source, DownloadableSource):
                raise ConfigurationError(
                    f"Component {name} entry for {platform_name} has no url"
                )
            platforms[_parse_platform_key(platform_name)] = source

        return cls(
            name=name,
            version=data["version"],
            description=data.get("description", ""),
            dir_prefix=data.get("dirPrefix", f"{name}-"),
            binaries=list(data.get("binaries", [])),
            platforms=platforms,
        )


@dataclass
class Sources:
    """Parsed contents of a database's sources.json."""

    database: str
    versions: dict[str, dict[Platform, SourceEntry]]
    components: dict[str, ComponentEntry] = field(default_factory=dict)
    notes: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_json(
        cls,
        data: dict[str, Any],
        default_algorithm: HashAlgorithm = HashAlgorithm.SHA256,
    ) -> "Sources":
        """Create Sources from the decoded sources.json document."""
        try:
            versions = {
                version: {
                    _parse_platform_key(platform_name): parse_source_entry(
                        entry, default_algorithm
                    )
                    for platform_name, entry in platforms.items()
                }
                for version, platforms in data["versions"].items()
            }
            components = {
                name: ComponentEntry.from_json(name, entry, default_algorithm)
                for name, entry in data.get("components", {}).items()
            }
            return cls(
                database=data["database"],
                versions=versions,
                components=components,
                notes=dict(data.get("notes", {})),
            )
        except (KeyError, AttributeError) as e:
            raise ConfigurationError(f"Invalid sources document: {e}") from e


def _parse_platform_key(value: str) -> Platform:
    try:
        return Platform(value)
    except ValueError:
        raise ConfigurationError(f"Unknown platform in sources.json: {value}") from None


@dataclass
class ProvenanceMetadata:
    """The .hostdb-metadata.json record stored in every archive."""

    name: str
    version: str
    platform: Platform
    source: str
    rehosted_at: datetime
    rehosted_by: str = REHOSTED_BY
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "platform": self.platform.value,
            "source": self.source,
        }
        record.update(self.extras)
        record["rehosted_by"] = self.rehosted_by
        record["rehosted_at"] = self.rehosted_at.isoformat().replace("+00:00", "Z")
        return record


class PlatformStatus(StrEnum):
    """Per-platform state within one run."""

    PENDING = "pending"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    BUILDING = "building"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    REPACKAGING = "repackaging"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PlatformStatus.DONE, PlatformStatus.SKIPPED, PlatformStatus.FAILED)


@dataclass
class PlatformResult:
    """Outcome of processing one platform."""

    platform: Platform
    status: PlatformStatus = PlatformStatus.PENDING
    output_path: str | None = None
    sha256: str | None = None
    built: bool = False
    reason: str | None = None


@dataclass
class RunSummary:
    """Results of one invocation, in processing order."""

    database: str
    version: str
    results: list[PlatformResult] = field(default_factory=list)

    def _count(self, status: PlatformStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def downloaded(self) -> int:
        return sum(
            1 for r in self.results if r.status is PlatformStatus.DONE and not r.built
        )

    @property
    def built(self) -> int:
        return sum(1 for r in self.results if r.status is PlatformStatus.DONE and r.built)

    @property
    def skipped(self) -> int:
        return self._count(PlatformStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(PlatformStatus.FAILED)

    @property
    def exit_code(self) -> int:
        if self.failed and not self._count(PlatformStatus.DONE):
            return 1
        return 0
