"""Selects the handler for a source descriptor."""

from hostdb.database_config import DatabaseConfig, HandlerKind
from hostdb.extractors import ExtractorSet
from hostdb.models import DownloadableSource, SourceFormat, SourceType
from hostdb.package_handlers.archive import (
    FlatZipHandler,
    PrefixedArchiveHandler,
    SingleBinaryHandler,
)
from hostdb.package_handlers.base import DatabaseHandler
from hostdb.package_handlers.jar import Mariadb4jHandler, ZonkyJarHandler
from hostdb.package_handlers.msi import MsiHandler

SOURCE_TYPE_HANDLERS: dict[SourceType, type[DatabaseHandler]] = {
    SourceType.MARIADB4J: Mariadb4jHandler,
    SourceType.ZONKY: ZonkyJarHandler,
}

KIND_HANDLERS: dict[HandlerKind, type[DatabaseHandler]] = {
    HandlerKind.PREFIXED_ARCHIVE: PrefixedArchiveHandler,
    HandlerKind.SINGLE_BINARY: SingleBinaryHandler,
    HandlerKind.FLAT_ZIP: FlatZipHandler,
}


def handler_for(
    config: DatabaseConfig, source: DownloadableSource, extractors: ExtractorSet
) -> DatabaseHandler:
    """Pick a handler: vendor JAR types first, then MSI, then the database's kind."""
    if source.source_type in SOURCE_TYPE_HANDLERS:
        handler_cls = SOURCE_TYPE_HANDLERS[source.source_type]
    elif source.format is SourceFormat.MSI:
        handler_cls = MsiHandler
    else:
        handler_cls = KIND_HANDLERS[config.handler]
    return handler_cls(config, extractors)
