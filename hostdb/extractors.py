"""Archive extraction capabilities, selected once per run by probing tools."""

import gzip
import logging
import lzma
import os
import platform as host_platform
import shutil
import subprocess
import tarfile
import zipfile
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from hostdb.exceptions import ConfigurationError, ExtractionFailure, ToolMissing
from hostdb.models import SourceFormat

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    """Unpacks one archive into a destination directory."""

    def extract(self, source: Path, dest: Path) -> None: ...


class TarExtractor:
    """tar.gz / tar.xz via :mod:`tarfile` with the ``data`` safety filter."""

    def __init__(self, compression: str):
        self.mode = f"r:{compression}"

    def extract(self, source: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(source, self.mode) as tar:
                tar.extractall(dest, filter="data")
        except (tarfile.TarError, EOFError, lzma.LZMAError, zlib.error, OSError) as e:
            raise ExtractionFailure(f"Failed to extract {source.name}: {e}") from e


class ZipExtractor:
    """zip and jar archives via :mod:`zipfile`, keeping Unix permission bits."""

    def extract(self, source: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(source) as archive:
                for info in archive.infolist():
                    extracted = archive.extract(info, dest)
                    mode = (info.external_attr >> 16) & 0o777
                    if mode and not info.is_dir():
                        os.chmod(extracted, mode)
        except (zipfile.BadZipFile, zlib.error, OSError) as e:
            raise ExtractionFailure(f"Failed to extract {source.name}: {e}") from e


class GzipExtractor:
    """A single gzip-compressed executable."""

    def extract(self, source: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        target = dest / source.name.removesuffix(".gz")
        try:
            with gzip.open(source, "rb") as src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
        except (OSError, EOFError, zlib.error) as e:
            raise ExtractionFailure(f"Failed to decompress {source.name}: {e}") from e
        target.chmod(0o755)


class CopyExtractor:
    """Raw binaries need no unpacking; the file is copied as-is."""

    def extract(self, source: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest / source.name)


class MsiUnavailable(ToolMissing):
    """No MSI extraction tool is installed on this host."""

    def __init__(self):
        super().__init__("msiexec, 7z or msiextract")


@dataclass
class MsiExtractor:
    """Ordered MSI extraction chain: msiexec, then 7z, then msiextract.

    Attributes:
        commands: Available tools in preference order, as (name, argv builder)
    """

    commands: list[tuple[str, Callable[[Path, Path], list[str]]]] = field(
        default_factory=list
    )

    @property
    def available(self) -> bool:
        return bool(self.commands)

    def extract(self, source: Path, dest: Path) -> None:
        if not self.commands:
            raise MsiUnavailable()

        dest.mkdir(parents=True, exist_ok=True)
        for name, build_args in self.commands:
            logger.info(f"Extracting MSI with {name}...")
            result = subprocess.run(
                build_args(source, dest),
                capture_output=True,
                text=True,
                check=False,
            )
            if result.returncode == 0:
                return
            logger.warning(
                f"{name} extraction failed (rc={result.returncode}): "
                f"{result.stderr.strip()[:500]}"
            )

        raise ExtractionFailure(f"All MSI extraction tools failed for {source.name}")


MSI_TOOLS: list[tuple[str, Callable[[Path, Path], list[str]], bool]] = [
    # (command, argv builder, windows host only)
    ("msiexec", lambda msi, dest: ["msiexec", "/a", str(msi), "/qn", f"TARGETDIR={dest}"], True),
    ("7z", lambda msi, dest: ["7z", "x", "-y", f"-o{dest}", str(msi)], False),
    ("msiextract", lambda msi, dest: ["msiextract", "-C", str(dest), str(msi)], False),
]


@dataclass
class ExtractorSet:
    """Format-to-extractor table covering every SourceFormat."""

    extractors: dict[SourceFormat, Extractor]

    def __post_init__(self) -> None:
        missing = set(SourceFormat) - set(self.extractors)
        if missing:
            raise ConfigurationError(
                f"No extractor for formats: {', '.join(sorted(missing))}"
            )

    @classmethod
    def probe(
        cls,
        which: Callable[[str], str | None] = shutil.which,
        host_is_windows: bool | None = None,
    ) -> "ExtractorSet":
        """Build the table, looking up external MSI tools once."""
        if host_is_windows is None:
            host_is_windows = host_platform.system() == "Windows"

        msi_commands = [
            (name, build_args)
            for name, build_args, windows_only in MSI_TOOLS
            if (host_is_windows or not windows_only) and which(name)
        ]
        if msi_commands:
            logger.debug(f"MSI tools available: {[name for name, _ in msi_commands]}")

        zip_extractor = ZipExtractor()
        return cls(
            extractors={
                SourceFormat.TAR_GZ: TarExtractor("gz"),
                SourceFormat.TAR_XZ: TarExtractor("xz"),
                SourceFormat.ZIP: zip_extractor,
                SourceFormat.JAR: zip_extractor,
                SourceFormat.MSI: MsiExtractor(msi_commands),
                SourceFormat.GZ: GzipExtractor(),
                SourceFormat.BINARY: CopyExtractor(),
            }
        )

    def extract(self, source: Path, fmt: SourceFormat, dest: Path) -> None:
        logger.info(f"Extracting {source.name} ({fmt.value})...")
        self.extractors[fmt].extract(source, dest)

    @property
    def msi_available(self) -> bool:
        msi = self.extractors[SourceFormat.MSI]
        return getattr(msi, "available", True)


def find_prefixed_dir(root: Path, prefix: str = "", suffix: str = "") -> Path:
    """First directory directly under ``root`` matching prefix and suffix.

    Raises:
        ExtractionFailure: If nothing matches
    """
    for entry in sorted(root.iterdir()):
        if entry.is_dir() and entry.name.startswith(prefix) and entry.name.endswith(suffix):
            return entry

    contents = ", ".join(sorted(p.name for p in root.iterdir())) or "<empty>"
    raise ExtractionFailure(
        f"Could not find extracted directory matching '{prefix}*{suffix}' in "
        f"{root} (found: {contents})"
    )


def find_dir_named(root: Path, name: str) -> Path:
    """Shallowest directory called ``name`` anywhere below ``root``."""
    matches = sorted(
        (p for p in root.rglob(name) if p.is_dir()),
        key=lambda p: (len(p.parts), str(p)),
    )
    if not matches:
        raise ExtractionFailure(f"Could not find directory '{name}' in {root}")
    return matches[0]


def find_file(root: Path, name: str) -> Path:
    """Find a file by name (case-insensitive) anywhere below ``root``."""
    wanted = name.lower()
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.name.lower() == wanted:
            return path
    raise ExtractionFailure(f"Could not find {name} in {root}")
