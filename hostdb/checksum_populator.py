"""Compute, record and verify the checksums stored in sources.json."""

import hashlib
import json
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from hostdb.config import RunContext, log_success
from hostdb.database_config import ConfigManager
from hostdb.downloader import CHUNK_SIZE, CONNECT_TIMEOUT, Fetcher
from hostdb.exceptions import ConfigurationError
from hostdb.models import HashAlgorithm


@dataclass
class PopulateReport:
    """Counts from one populate or verify pass."""

    verify: bool = False
    updated: int = 0
    verified: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def exit_code(self) -> int:
        return 1 if self.verify and self.failed else 0


class ChecksumPopulator:
    """Downloads each source URL and records its digest in sources.json.

    The document is edited as plain JSON so fields this tool does not model
    (``$schema``, notes) survive unchanged.
    """

    def __init__(self, context: RunContext, config_manager: ConfigManager, fetcher: Fetcher):
        self.logger = context.child("checksums")
        self.config_manager = config_manager
        self.fetcher = fetcher

    def run(self, database: str, force: bool = False, verify: bool = False) -> PopulateReport:
        """Populate missing checksums, recompute all of them, or verify them.

        Args:
            database: Database name
            force: Recompute checksums that are already recorded
            verify: Compare recorded checksums instead of writing

        Returns:
            PopulateReport with the counts

        Raises:
            ConfigurationError: If sources.json cannot be read
        """
        config = self.config_manager.get_config(database)
        sources_path = self.config_manager.sources_path(database)
        data = self._load(sources_path)

        self.logger.info(f"{'Verifying' if verify else 'Populating'} checksums for {database}")
        report = PopulateReport(verify=verify)

        for label, entry in self._entries(data):
            # An entry keeps the algorithm it already records
            algorithm = next(
                (a for a in HashAlgorithm if a.json_key in entry), config.hash_algorithm
            )
            key = algorithm.json_key
            stored = entry.get(key)

            if stored and not force and not verify:
                self.logger.info(f"{label}: already has checksum (skipping)")
                report.skipped += 1
                continue

            self.logger.info(f"Downloading {label}...")
            try:
                computed = self.hash_url(entry["url"], algorithm)
            except requests.RequestException as e:
                self.logger.error(f"{label}: {e}")
                report.failed += 1
                continue

            if verify:
                if not stored:
                    self.logger.warning(f"{label}: no checksum stored")
                    report.skipped += 1
                elif stored.lower() == computed:
                    log_success(self.logger, f"{label}: checksum verified")
                    report.verified += 1
                else:
                    self.logger.error(f"{label}: CHECKSUM MISMATCH!")
                    self.logger.error(f"  Expected: {stored}")
                    self.logger.error(f"  Computed: {computed}")
                    report.failed += 1
            elif stored != computed:
                entry[key] = computed
                log_success(self.logger, f"{label}: {computed[:16]}...")
                report.updated += 1
            else:
                self.logger.info(f"{label}: unchanged")
                report.skipped += 1

        if verify:
            self.logger.info(
                f"Verified: {report.verified}, Skipped: {report.skipped}, Failed: {report.failed}"
            )
            return report

        if report.updated:
            self._write(sources_path, data)
            log_success(self.logger, f"Updated {report.updated} checksums in {sources_path}")
        else:
            self.logger.info("No checksums updated")
        self.logger.info(f"Skipped: {report.skipped}, Failed: {report.failed}")
        return report

    def hash_url(self, url: str, algorithm: HashAlgorithm) -> str:
        """Stream a URL through a hash without writing it to disk."""
        digest = hashlib.new(algorithm.hashlib_name)
        response = self.fetcher.session.get(
            url, stream=True, timeout=(CONNECT_TIMEOUT, self.fetcher.timeout)
        )
        try:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                digest.update(chunk)
        finally:
            response.close()
        return digest.hexdigest()

    def _entries(self, data: dict[str, Any]) -> Iterator[tuple[str, dict[str, Any]]]:
        """Downloadable entries of versions and components, with display labels."""
        for version, platforms in data.get("versions", {}).items():
            for platform, entry in platforms.items():
                if entry.get("url"):
                    yield f"{version}/{platform}", entry

        for name, component in data.get("components", {}).items():
            for platform, entry in component.get("platforms", {}).items():
                if entry.get("url"):
                    yield f"{name} {component.get('version')}/{platform}", entry

    def _load(self, sources_path: Path) -> dict[str, Any]:
        try:
            with open(sources_path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read {sources_path}: {e}") from e

    def _write(self, sources_path: Path, data: dict[str, Any]) -> None:
        tmp_path = sources_path.with_name(sources_path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, sources_path)
