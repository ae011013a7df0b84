"""hostdb command line interface."""

import functools
import logging
from collections.abc import Callable

import click

from hostdb.builders import create_builder
from hostdb.checksum_populator import ChecksumPopulator
from hostdb.config import RunContext, Settings, setup_logging
from hostdb.database_config import ConfigManager
from hostdb.downloader import DownloadCache, Fetcher
from hostdb.exceptions import HostdbError, InvalidArgument
from hostdb.extractors import ExtractorSet
from hostdb.models import BuildRequiredSource, Platform, validate_version
from hostdb.pipeline import RehostPipeline
from hostdb.repackager import Repackager
from hostdb.source_resolver import SourceResolver

logger = logging.getLogger("hostdb")


def exit_on_error(func: Callable) -> Callable:
    """Report HostdbError as a single error line and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except HostdbError as e:
            logger.error(str(e))
            raise SystemExit(1) from e

    return wrapper


@click.group()
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR (default: $HOSTDB_LOG_LEVEL or INFO)")
def cli(log_level: str | None) -> None:
    """Re-host pre-built database binaries as uniform archives."""
    setup_logging(log_level)


@cli.command()
@click.argument("database")
@click.option("--version", "version", required=True, help="Version to re-host, e.g. 11.4.5")
@click.option(
    "--platform",
    "platforms",
    multiple=True,
    help=f"Target platform (repeatable): {', '.join(p.value for p in Platform)}",
)
@click.option("--all-platforms", is_flag=True, help="Process every platform in order")
@click.option("--output", default="dist", show_default=True, help="Output directory")
@click.option("--build-fallback", is_flag=True, help="Build platforms that have no binary")
@exit_on_error
def rehost(
    database: str,
    version: str,
    platforms: tuple[str, ...],
    all_platforms: bool,
    output: str,
    build_fallback: bool,
) -> None:
    """Download, verify and repackage DATABASE for one or more platforms."""
    # Arguments are validated before any file or network access
    validate_version(version)
    if all_platforms:
        targets = list(Platform)
    elif platforms:
        targets = [Platform.parse(p) for p in platforms]
    else:
        targets = [Platform.detect()]

    settings = Settings.from_env(output_dir=output)
    context = RunContext(settings)
    manager = ConfigManager(settings.config_dir, settings.builds_dir)
    config = manager.get_config(database)
    resolver = SourceResolver.load(manager.sources_path(database), config.hash_algorithm)
    resolver.require_version(version)

    logger.info(f"{config.display_name} {version}")
    logger.info(f"Platforms: {', '.join(targets)}")
    logger.info(f"Output: {settings.output_dir}")

    fetcher = Fetcher(context)
    pipeline = RehostPipeline(
        context,
        config,
        resolver,
        DownloadCache(context, fetcher),
        ExtractorSet.probe(),
        Repackager(context),
        create_builder(context, config, manager.build_script_path(database)),
    )
    summary = pipeline.run(version, targets, build_fallback=build_fallback)

    if summary.exit_code:
        raise SystemExit(summary.exit_code)


@cli.command()
@click.argument("database")
@click.option("--force", is_flag=True, help="Recompute checksums that are already recorded")
@click.option("--verify", is_flag=True, help="Verify recorded checksums without writing")
@exit_on_error
def checksums(database: str, force: bool, verify: bool) -> None:
    """Populate or verify the checksums in builds/DATABASE/sources.json."""
    if force and verify:
        raise InvalidArgument("--force and --verify cannot be combined")

    settings = Settings.from_env()
    context = RunContext(settings)
    manager = ConfigManager(settings.config_dir, settings.builds_dir)
    populator = ChecksumPopulator(context, manager, Fetcher(context))

    report = populator.run(database, force=force, verify=verify)
    if report.exit_code:
        raise SystemExit(report.exit_code)


@cli.command(name="list")
@exit_on_error
def list_databases() -> None:
    """List databases with their versions and platform coverage."""
    settings = Settings.from_env()
    manager = ConfigManager(settings.config_dir, settings.builds_dir)

    for config in manager.load_all_configs():
        resolver = SourceResolver.load(manager.sources_path(config.name), config.hash_algorithm)
        click.echo(click.style(config.display_name, bold=True) + f" ({config.name})")
        for version, entries in resolver.sources.versions.items():
            coverage = []
            for platform in Platform:
                entry = entries.get(platform)
                if entry is None:
                    continue
                marker = "*" if isinstance(entry, BuildRequiredSource) else ""
                coverage.append(f"{platform}{marker}")
            click.echo(f"  {version}: {', '.join(coverage) or 'no platforms'}")
    click.echo("(* = build required)")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
