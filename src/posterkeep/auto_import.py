"""The scheduled full import.

One run walks every enabled media type across every library that is not
excluded, in this order:

1. bail out if disabled, misconfigured, already running or not yet due
2. list libraries (a failure here fails the run)
3. update the library registry, clearing ids of libraries that vanished
4. clean up duplicate collection posters
5. import each media type, reconciling orphans once per media type
6. record the run time
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from posterkeep.config import AppConfig, get_data_dir, get_poster_dir, validate_config
from posterkeep.errors import ConfigError, RemoteApiError
from posterkeep.importer import BatchCursor, PosterImporter
from posterkeep.libraries import LibraryRegistry, MissingLibrary
from posterkeep.naming import MediaType
from posterkeep.plex import PlexClient, PlexLibrary
from posterkeep.reconcile import CleanupResult
from posterkeep.scheduler import LAST_RUN_FILENAME, LOCK_FILENAME, LastRun, RunLock, parse_interval
from posterkeep.store import ValidIdStore

logger = logging.getLogger(__name__)

LOG_FILENAME = "auto_import.log"

STATUS_COMPLETED = "completed"
STATUS_DISABLED = "disabled"
STATUS_LOCKED = "locked"
STATUS_NOT_DUE = "not_due"
STATUS_FAILED = "failed"


@dataclass
class AutoImportReport:
    """Outcome of a scheduled run."""

    status: str
    message: str = ""
    results: dict[MediaType, BatchCursor] = field(default_factory=dict)
    missing_libraries: dict[MediaType, list[MissingLibrary]] = field(default_factory=dict)
    cleanup: CleanupResult | None = None

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 for success or skip, 1 for failure."""
        return 1 if self.status == STATUS_FAILED else 0


def enabled_media_types(config: AppConfig) -> list[MediaType]:
    """Media types switched on for the scheduled import, in import order."""
    toggles = config.auto_import
    enabled = [
        (MediaType.MOVIE, toggles.import_movies),
        (MediaType.SHOW, toggles.import_shows),
        (MediaType.SEASON, toggles.import_seasons),
        (MediaType.COLLECTION, toggles.import_collections),
    ]
    return [media_type for media_type, on in enabled if on]


def filter_excluded(libraries: list[PlexLibrary], excluded: list[str]) -> list[PlexLibrary]:
    """Drop libraries whose title is on the exclusion list."""
    excluded_titles = {title.strip() for title in excluded}
    return [lib for lib in libraries if lib.title.strip() not in excluded_titles]


class AutoImporter:
    """Runs the scheduled import."""

    def __init__(
        self,
        config: AppConfig,
        client: PlexClient | None = None,
        data_dir: Path | None = None,
        poster_dir: Path | None = None,
    ) -> None:
        """Initialize the scheduled import.

        Args:
            config: Application configuration.
            client: Plex client; built from `config` if omitted.
            data_dir: Sidecar state directory; from `config` if omitted.
            poster_dir: Root poster directory; from `config` if omitted.
        """
        self.config = config
        self._client = client
        self.data_dir = data_dir or get_data_dir(config)
        self.poster_dir = poster_dir or get_poster_dir(config)

    def _make_client(self) -> PlexClient:
        plex = self.config.plex
        return PlexClient(
            url=plex.url,
            token=plex.token,
            connect_timeout=plex.connect_timeout,
            request_timeout=plex.request_timeout,
        )

    def run(self, force: bool = False) -> AutoImportReport:
        """Run the import if it is enabled and due.

        Args:
            force: Ignore the schedule interval.

        Returns:
            Report with per-media-type results; never raises for errors
            that the run can report.
        """
        if not self.config.auto_import.enabled:
            logger.info("Auto-import is disabled")
            return AutoImportReport(STATUS_DISABLED, "Auto-import is disabled")

        try:
            validate_config(self.config)
        except ConfigError as e:
            logger.error("%s", e)
            return AutoImportReport(STATUS_FAILED, str(e))

        with RunLock(self.data_dir / LOCK_FILENAME) as lock:
            if not lock.acquired:
                return AutoImportReport(STATUS_LOCKED, "Another import is already running")

            last_run = LastRun(self.data_dir / LAST_RUN_FILENAME)
            interval = parse_interval(self.config.auto_import.schedule)
            if not force and not last_run.is_due(interval):
                logger.info("Not due yet (schedule %s)", self.config.auto_import.schedule)
                return AutoImportReport(STATUS_NOT_DUE, "Import is not due yet")

            client = self._client or self._make_client()
            try:
                report = self._import(client)
            finally:
                if self._client is None:
                    client.close()

            if report.status == STATUS_COMPLETED:
                last_run.write()
            return report

    def _import(self, client: PlexClient) -> AutoImportReport:
        try:
            libraries = client.get_libraries()
        except RemoteApiError as e:
            logger.error("Failed to list Plex libraries: %s", e)
            return AutoImportReport(STATUS_FAILED, f"Failed to list Plex libraries: {e}")

        report = AutoImportReport(STATUS_COMPLETED)
        included = filter_excluded(libraries, self.config.auto_import.excluded_libraries)
        media_types = enabled_media_types(self.config)

        store = ValidIdStore(self.data_dir)
        registry = LibraryRegistry(self.data_dir, store)
        importer = PosterImporter(
            client,
            store,
            self.poster_dir,
            batch_size=self.config.plex.import_batch_size,
            remove_overlay_label=self.config.plex.remove_overlay_label,
        )

        store.open_session()
        try:
            for media_type in media_types:
                missing = registry.refresh(libraries, media_type)
                if missing:
                    report.missing_libraries[media_type] = missing

            if MediaType.COLLECTION in media_types:
                report.cleanup = importer.cleanup_collections(included)

            for media_type in media_types:
                cursor = importer.import_media_type(media_type, included)
                report.results[media_type] = cursor
                totals = cursor.totals
                logger.info(
                    "%s: %d successful, %d unchanged, %d renamed, %d skipped, %d failed",
                    media_type.value,
                    totals.successful,
                    totals.unchanged,
                    totals.renamed,
                    totals.skipped,
                    totals.failed,
                )
        finally:
            store.close_session()

        report.message = "Import completed"
        return report
