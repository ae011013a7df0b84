"""Download, verify and repackage pipeline run once per platform."""

import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from hostdb.builders import Builder
from hostdb.checksum import calculate_hash
from hostdb.config import RunContext, log_success
from hostdb.database_config import DatabaseConfig
from hostdb.downloader import DownloadCache
from hostdb.exceptions import (
    BuildFailure,
    ChecksumMismatch,
    HostdbError,
    PlatformUnavailable,
)
from hostdb.extractors import ExtractorSet, find_prefixed_dir
from hostdb.models import (
    BuildRequiredSource,
    ComponentEntry,
    DownloadableSource,
    Platform,
    PlatformResult,
    PlatformStatus,
    ProvenanceMetadata,
    RunSummary,
    SourceFormat,
    SourceType,
    validate_version,
)
from hostdb.package_handlers.archive import SingleBinaryHandler
from hostdb.package_handlers.base import Payload
from hostdb.package_handlers.registry import handler_for
from hostdb.repackager import Repackager
from hostdb.source_resolver import SourceResolver


class RehostPipeline:
    """Processes the requested platforms of one database version in order.

    Attributes:
        config: Database configuration
        resolver: Source lookup for the database's sources.json
        builder: Fallback builder, or None when the database has none
    """

    def __init__(
        self,
        context: RunContext,
        config: DatabaseConfig,
        resolver: SourceResolver,
        cache: DownloadCache,
        extractors: ExtractorSet,
        repackager: Repackager,
        builder: Builder | None = None,
    ):
        self.context = context
        self.logger = context.child("pipeline")
        self.settings = context.settings
        self.config = config
        self.resolver = resolver
        self.cache = cache
        self.extractors = extractors
        self.repackager = repackager
        self.builder = builder

    def run(
        self, version: str, platforms: Sequence[Platform], build_fallback: bool = False
    ) -> RunSummary:
        """Process each platform sequentially.

        Args:
            version: Requested version
            platforms: Platforms in processing order
            build_fallback: Whether build-required platforms may be built

        Returns:
            RunSummary with one result per platform

        Raises:
            InvalidArgument: If the version is malformed
            SourceNotFound: If sources.json has no such version
            ChecksumMismatch: As soon as any download fails verification
        """
        self.resolver.require_version(version)
        summary = RunSummary(database=self.config.name, version=version)

        for platform in platforms:
            self.logger.info(f"--- {self.config.display_name} {version} for {platform} ---")
            result = PlatformResult(platform=platform)
            summary.results.append(result)

            try:
                self._process(version, platform, build_fallback, result)
            except PlatformUnavailable as e:
                self._transition(result, PlatformStatus.SKIPPED, str(e))
                self.logger.warning(str(e))
            except HostdbError as e:
                self._transition(result, PlatformStatus.FAILED, str(e))
                if e.fatal_to_run:
                    if isinstance(e, ChecksumMismatch):
                        self.logger.error("Aborting run: downloaded artifact cannot be trusted")
                    raise
                self.logger.error(f"Failed {platform}: {e}")
            except OSError as e:
                # Disk errors while staging or archiving affect this platform only
                self._transition(result, PlatformStatus.FAILED, str(e))
                self.logger.error(f"Failed {platform}: {e}")

        self._log_summary(summary)
        return summary

    def output_path(self, version: str, platform: Platform) -> Path:
        return (
            self.settings.output_dir
            / f"{self.config.name}-{version}-{platform}.{platform.archive_extension}"
        )

    def _transition(
        self, result: PlatformResult, status: PlatformStatus, reason: str | None = None
    ) -> None:
        self.logger.debug(f"{result.platform}: {result.status} -> {status}")
        result.status = status
        if reason:
            result.reason = reason

    def _process(
        self, version: str, platform: Platform, build_fallback: bool, result: PlatformResult
    ) -> None:
        self._transition(result, PlatformStatus.RESOLVING)
        entry = self.resolver.resolve(version, platform)
        if entry is None:
            raise PlatformUnavailable(
                f"No source for {platform} in version {version}, skipping"
            )

        if isinstance(entry, BuildRequiredSource):
            self._build(version, platform, entry, build_fallback, result)
        else:
            self._download(version, platform, entry, result)

    def _download(
        self,
        version: str,
        platform: Platform,
        source: DownloadableSource,
        result: PlatformResult,
    ) -> None:
        name = self.config.name

        self._transition(result, PlatformStatus.DOWNLOADING)
        archive = self.cache.obtain(
            source.url,
            name,
            version,
            platform.value,
            "original",
            extension=source.download_extension,
        )
        components = self._fetch_components(platform)
        jre_archive = self._fetch_jre(platform)

        self._transition(result, PlatformStatus.VERIFYING)
        self.cache.verify(archive, source, f"{name} {version} ({platform})")
        for component, component_source, path in components:
            self.cache.verify(path, component_source, f"{component.name} {component.version}")

        handler = handler_for(self.config, source, self.extractors)
        with tempfile.TemporaryDirectory(prefix=f"hostdb-{name}-") as work:
            work_dir = Path(work)

            self._transition(result, PlatformStatus.EXTRACTING)
            payload = handler.prepare_payload(
                archive, source, version, platform, work_dir / "source"
            )
            component_dirs = self._extract_components(components, work_dir)
            jre_dir = self._extract_jre(jre_archive, platform, work_dir)

            extras = handler.metadata_extras(source)
            extras.update(self._bundle_extras(version, platform, jre_dir))
            extras.update(payload.extras)

            self._transition(result, PlatformStatus.REPACKAGING)
            self._repackage(
                version, platform, payload, source.source_type, extras,
                component_dirs, jre_dir, result,
            )

    def _build(
        self,
        version: str,
        platform: Platform,
        entry: BuildRequiredSource,
        build_fallback: bool,
        result: PlatformResult,
    ) -> None:
        if not build_fallback:
            raise PlatformUnavailable(
                f"{platform} requires building from source (no binary available); "
                "use --build-fallback to build it"
            )
        if self.builder is None or not self.config.can_build(platform):
            raise PlatformUnavailable(f"{platform} cannot be built from this host")

        self._transition(result, PlatformStatus.BUILDING)
        self.builder.check_tools()
        output_dir = self.settings.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)

        if not self.builder.build(version, platform, output_dir):
            raise BuildFailure(f"Build failed for {platform}")
        result.built = True
        artifact = self.builder.artifact_path(version, platform, output_dir)

        if self.builder.produces_archive:
            if not artifact.is_file():
                raise BuildFailure(f"Build finished but produced no archive at {artifact}")
            self._record_output(result, artifact, calculate_hash(artifact))
            return

        # Built binaries are repackaged like a download, with components bundled
        components = self._fetch_components(platform)
        self._transition(result, PlatformStatus.VERIFYING)
        for component, component_source, path in components:
            self.cache.verify(path, component_source, f"{component.name} {component.version}")

        with tempfile.TemporaryDirectory(prefix=f"hostdb-{self.config.name}-") as work:
            work_dir = Path(work)

            self._transition(result, PlatformStatus.EXTRACTING)
            payload = SingleBinaryHandler(self.config, self.extractors).place_binary(
                artifact, platform, work_dir / "source"
            )
            component_dirs = self._extract_components(components, work_dir)

            extras: dict[str, Any] = {}
            source_url = self.config.source_urls.get(entry.source_type)
            if source_url:
                extras["sourceUrl"] = source_url
            extras.update(self.config.metadata)
            extras.update(self._bundle_extras(version, platform, None))

            self._transition(result, PlatformStatus.REPACKAGING)
            self._repackage(
                version, platform, payload, entry.source_type, extras,
                component_dirs, None, result,
            )

    def _repackage(
        self,
        version: str,
        platform: Platform,
        payload: Payload,
        source_type: SourceType,
        extras: dict[str, Any],
        component_dirs: list[Path],
        jre_dir: Path | None,
        result: PlatformResult,
    ) -> None:
        metadata = ProvenanceMetadata(
            name=self.config.name,
            version=version,
            platform=platform,
            source=self.config.source_label(source_type),
            rehosted_at=self.settings.now(),
            extras=extras,
        )
        output_path = self.output_path(version, platform)
        sha256 = self.repackager.repackage(
            payload.directory, output_path, metadata, component_dirs, jre_dir
        )
        self._record_output(result, output_path, sha256)

    def _record_output(self, result: PlatformResult, path: Path, sha256: str) -> None:
        result.output_path = str(path)
        result.sha256 = sha256
        self._transition(result, PlatformStatus.DONE)
        log_success(self.logger, f"{result.platform}: {path} (sha256 {sha256})")

    def _fetch_components(
        self, platform: Platform
    ) -> list[tuple[ComponentEntry, DownloadableSource, Path]]:
        fetched = []
        for component, source in self.resolver.components_for(platform):
            validate_version(component.version)
            self.logger.info(f"Fetching {component.name} {component.version}...")
            path = self.cache.obtain(
                source.url,
                component.name,
                component.version,
                platform.value,
                "original",
                extension=source.download_extension,
            )
            fetched.append((component, source, path))
        return fetched

    def _extract_components(
        self,
        components: list[tuple[ComponentEntry, DownloadableSource, Path]],
        work_dir: Path,
    ) -> list[Path]:
        component_dirs = []
        for component, source, path in components:
            extract_dir = work_dir / "components" / component.name
            self.extractors.extract(path, source.format, extract_dir)
            component_dirs.append(find_prefixed_dir(extract_dir, component.dir_prefix))
        return component_dirs

    def _fetch_jre(self, platform: Platform) -> Path | None:
        jre = self.config.jre
        if jre is None or not jre.needs_jre(platform):
            return None
        self.logger.info(f"Fetching Java runtime ({jre.label}) for {platform}...")
        return self.cache.obtain(
            jre.urls[platform], "jre", jre.label, platform.value, extension="tar.gz"
        )

    def _extract_jre(
        self, jre_archive: Path | None, platform: Platform, work_dir: Path
    ) -> Path | None:
        if jre_archive is None:
            return None

        extract_dir = work_dir / "jre"
        self.extractors.extract(jre_archive, SourceFormat.TAR_GZ, extract_dir)
        jre_dir = find_prefixed_dir(extract_dir, self.config.jre.dir_prefix)

        # macOS runtimes keep the actual JRE inside Contents/Home
        mac_home = jre_dir / "Contents" / "Home"
        if platform.is_darwin and mac_home.is_dir():
            jre_dir = mac_home
        self.logger.info(f"Found JRE: {jre_dir.relative_to(extract_dir)}")
        return jre_dir

    def _bundle_extras(
        self, version: str, platform: Platform, jre_dir: Path | None
    ) -> dict[str, Any]:
        """Provenance fields describing bundled components and runtimes."""
        extras: dict[str, Any] = {}

        all_components = self.resolver.sources.components
        if all_components:
            bundled = {
                self.config.primary_component or self.config.name: version,
            }
            for name, component in all_components.items():
                bundled[name] = (
                    component.version if platform in component.platforms else "not-included"
                )
            extras["components"] = bundled

        if self.config.jre is not None:
            extras["jre_bundled"] = self.config.jre.label if jre_dir else "included"

        return extras

    def _log_summary(self, summary: RunSummary) -> None:
        self.logger.info("")
        self.logger.info("Summary:")
        self.logger.info(f"  Downloaded: {summary.downloaded}")
        if summary.built:
            self.logger.info(f"  Built: {summary.built}")
        if summary.skipped:
            self.logger.warning(f"  Skipped: {summary.skipped}")
        if summary.failed:
            self.logger.error(f"  Failed: {summary.failed}")
            for result in summary.results:
                if result.status is PlatformStatus.FAILED:
                    self.logger.error(f"    {result.platform}: {result.reason}")
