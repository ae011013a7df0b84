"""Per-database repackaging configuration loaded from YAML."""

import re
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from hostdb.exceptions import ConfigurationError, InvalidArgument
from hostdb.models import HashAlgorithm, Platform, SourceType

DATABASE_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")


class HandlerKind(StrEnum):
    """How an official archive is turned into a payload directory."""

    PREFIXED_ARCHIVE = "prefixed-archive"
    SINGLE_BINARY = "single-binary"
    FLAT_ZIP = "flat-zip"


class BuilderKind(StrEnum):
    """How build-required platforms are produced."""

    NONE = "none"
    SCRIPT = "script"
    GO_CROSS_COMPILE = "go-cross-compile"


@dataclass(frozen=True)
class PayloadLayout:
    """Where the payload sits inside an extracted archive.

    Attributes:
        prefix: Name prefix of the top-level extracted directory
        suffix: Name suffix of the top-level extracted directory (e.g. ".app")
        subpath: Path below the matched directory holding the payload
    """

    prefix: str = ""
    suffix: str = ""
    subpath: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PayloadLayout":
        data = data or {}
        return cls(
            prefix=data.get("prefix", ""),
            suffix=data.get("suffix", ""),
            subpath=data.get("subpath", ""),
        )


@dataclass(frozen=True)
class JreConfig:
    """Java runtime bundled for platforms whose package ships without one."""

    urls: dict[Platform, str]
    dir_prefix: str = "jdk-"
    label: str = "adoptium-21"

    def needs_jre(self, platform: Platform) -> bool:
        return platform in self.urls


@dataclass
class DatabaseConfig:
    """Configuration for one re-hosted database.

    Attributes:
        name: Canonical database name, also the archive's top-level directory
        display_name: Human-readable name for log output
        handler: How official archives are unpacked
        layouts: Payload layout per source type
        binary_name: Executable name for single-binary databases
        binary_dir: Directory inside the payload receiving that executable
        hash_algorithm: Default checksum algorithm for sources.json entries
        source_labels: Provenance ``source`` value per source type
        source_urls: Upstream URL recorded as ``sourceUrl`` per source type
        buildable_platforms: Platforms the fallback builder can produce
        builder: Fallback builder kind
        build_timeout: Seconds before a build is abandoned
        source_repo: Git repository cloned by the cross-compiler
        build_package: Go package path passed to ``go build``
        jre: JRE bundling settings, if any
        primary_component: Key for the database itself in the ``components`` record
        metadata: Extra fields copied into the provenance record
    """

    name: str
    display_name: str
    handler: HandlerKind = HandlerKind.PREFIXED_ARCHIVE
    layouts: dict[SourceType, PayloadLayout] = field(default_factory=dict)
    binary_name: str | None = None
    binary_dir: str = ""
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256
    source_labels: dict[SourceType, str] = field(default_factory=dict)
    source_urls: dict[SourceType, str] = field(default_factory=dict)
    buildable_platforms: list[Platform] = field(default_factory=list)
    builder: BuilderKind = BuilderKind.NONE
    build_timeout: int | None = None
    source_repo: str | None = None
    build_package: str = "."
    jre: JreConfig | None = None
    primary_component: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "DatabaseConfig":
        """Load configuration from a YAML file.

        Args:
            yaml_path: Path to the YAML configuration file

        Returns:
            DatabaseConfig populated from the YAML file

        Raises:
            FileNotFoundError: If the YAML file does not exist
            ConfigurationError: If fields are missing or hold unknown values
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f)

        try:
            jre_data = data.get("jre")
            jre = None
            if jre_data:
                jre = JreConfig(
                    urls={Platform(p): url for p, url in jre_data["urls"].items()},
                    dir_prefix=jre_data.get("dir_prefix", "jdk-"),
                    label=jre_data.get("label", "adoptium-21"),
                )

            return cls(
                name=data["name"],
                display_name=data.get("display_name", data["name"]),
                handler=HandlerKind(data.get("handler", HandlerKind.PREFIXED_ARCHIVE)),
                layouts={
                    SourceType(source_type): PayloadLayout.from_dict(layout)
                    for source_type, layout in (data.get("layouts") or {}).items()
                },
                binary_name=data.get("binary_name"),
                binary_dir=data.get("binary_dir", ""),
                hash_algorithm=HashAlgorithm(data.get("hash_algorithm", "sha256")),
                source_labels={
                    SourceType(source_type): label
                    for source_type, label in (data.get("source_labels") or {}).items()
                },
                source_urls={
                    SourceType(source_type): url
                    for source_type, url in (data.get("source_urls") or {}).items()
                },
                buildable_platforms=[
                    Platform(p) for p in data.get("buildable_platforms", [])
                ],
                builder=BuilderKind(data.get("builder", BuilderKind.NONE)),
                build_timeout=data.get("build_timeout"),
                source_repo=data.get("source_repo"),
                build_package=data.get("build_package", "."),
                jre=jre,
                primary_component=data.get("primary_component"),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid database config {yaml_path}: {e}") from e

    def layout_for(self, source_type: SourceType) -> PayloadLayout:
        """Layout for a source type, falling back to the official layout."""
        if source_type in self.layouts:
            return self.layouts[source_type]
        return self.layouts.get(SourceType.OFFICIAL, PayloadLayout())

    def source_label(self, source_type: SourceType) -> str:
        """Value of the provenance ``source`` field for a source type."""
        return self.source_labels.get(source_type, source_type.value)

    def can_build(self, platform: Platform) -> bool:
        return self.builder is not BuilderKind.NONE and platform in self.buildable_platforms


class ConfigManager:
    """Manages database configuration files and their sources.json paths.

    Attributes:
        config_dir: Path to the directory containing database YAML configs
        builds_dir: Path to the directory holding builds/<db>/ folders
    """

    def __init__(
        self, config_dir: str | Path = "config/databases", builds_dir: str | Path = "builds"
    ) -> None:
        self.config_dir = Path(config_dir)
        self.builds_dir = Path(builds_dir)

    def load_all_configs(self) -> list[DatabaseConfig]:
        """Load all database configurations, sorted by name."""
        configs = [
            DatabaseConfig.from_yaml(yaml_file)
            for yaml_file in self.config_dir.glob("*.yaml")
        ]
        return sorted(configs, key=lambda c: c.name)

    def get_config(self, database: str) -> DatabaseConfig:
        """Get configuration for a specific database.

        Raises:
            InvalidArgument: If the name is malformed or no config exists
        """
        self._validate_name(database)
        yaml_path = self.config_dir / f"{database}.yaml"
        if not yaml_path.is_file():
            available = ", ".join(c.name for c in self.load_all_configs())
            raise InvalidArgument(
                f"Unknown database: {database}. Available: {available or 'none'}"
            )
        return DatabaseConfig.from_yaml(yaml_path)

    def sources_path(self, database: str) -> Path:
        self._validate_name(database)
        return self.builds_dir / database / "sources.json"

    def build_script_path(self, database: str) -> Path:
        self._validate_name(database)
        return self.builds_dir / database / "build-local.sh"

    @staticmethod
    def _validate_name(database: str) -> None:
        if not DATABASE_NAME_PATTERN.fullmatch(database):
            raise InvalidArgument(f"Invalid database name: {database!r}")
