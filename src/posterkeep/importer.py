"""Import orchestration: Plex items in, poster files out.

Movies, shows, seasons and collections all go through one generic import
path. What differs per media type lives in a small `MediaPolicy`: the
directory, which fields are embedded in the filename, which library types
feed it, and how a page of items is enumerated.

Imports advance one page at a time through `PosterImporter.run_batch`,
which takes a `BatchCursor` and returns the next one. The cursor is plain
data, so an interactive caller can persist it between invocations; the
scheduled run simply loops until the cursor reports completion.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from posterkeep.errors import FilesystemError, MalformedItemError, RemoteApiError
from posterkeep.libraries import LIBRARY_KINDS, libraries_for
from posterkeep.naming import (
    MediaType,
    PosterName,
    extract_id,
    is_managed,
)
from posterkeep.plex import ItemPage, PlexClient, PlexItem, PlexLibrary
from posterkeep.reconcile import CleanupResult, OrphanResult, ReconcileScope, Reconciler
from posterkeep.store import ValidIdStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
OVERLAY_LABEL = "Overlay"


class OverwriteMode(str, Enum):
    """What to do when the canonical poster file already exists."""

    OVERWRITE = "overwrite"  # re-download, write only if the bytes changed
    SKIP = "skip"


@dataclass(frozen=True)
class MediaPolicy:
    """Per-media-type parameters of the generic import path."""

    media_type: MediaType
    directory_name: str
    embed_year: bool = False
    embed_library_name: bool = True

    @property
    def library_kinds(self) -> tuple[str, ...]:
        """Library types whose items feed this media type."""
        return LIBRARY_KINDS[self.media_type]

    def poster_name(self, item: PlexItem, library: PlexLibrary) -> PosterName:
        """Build the canonical poster name for an item."""
        is_collection = self.media_type == MediaType.COLLECTION
        return PosterName(
            title=item.display_title,
            item_id=item.rating_key,
            media_type=self.media_type,
            library_kind=library.type if is_collection else None,
            library_name=library.title if self.embed_library_name else None,
            year=item.year if self.embed_year else None,
            added_at=item.added_at,
        )


POLICIES: dict[MediaType, MediaPolicy] = {
    MediaType.MOVIE: MediaPolicy(MediaType.MOVIE, "movies", embed_year=True),
    MediaType.SHOW: MediaPolicy(MediaType.SHOW, "tv-shows"),
    MediaType.SEASON: MediaPolicy(MediaType.SEASON, "tv-seasons"),
    MediaType.COLLECTION: MediaPolicy(
        MediaType.COLLECTION, "collections", embed_library_name=False
    ),
}


def media_type_for_directory(directory_name: str) -> MediaType | None:
    """Get the media type whose posters live in a directory name."""
    for policy in POLICIES.values():
        if policy.directory_name == directory_name:
            return policy.media_type
    return None


class ImportStats(BaseModel):
    """Counts for one or more import pages."""

    successful: int = 0
    skipped: int = 0
    unchanged: int = 0
    renamed: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
    imported_ids: list[str] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        """Total items handled, including failures."""
        return self.successful + self.skipped + self.unchanged + self.failed

    def merge(self, other: ImportStats) -> None:
        """Add another set of counts into this one."""
        self.successful += other.successful
        self.skipped += other.skipped
        self.unchanged += other.unchanged
        self.renamed += other.renamed
        self.failed += other.failed
        self.errors.extend(other.errors)
        self.imported_ids.extend(other.imported_ids)


class BatchCursor(BaseModel):
    """Resumable position of an import across libraries and pages.

    Returned by every `PosterImporter.run_batch` call and passed to the next.
    """

    media_type: MediaType
    library_ids: list[str] = Field(default_factory=list)
    library_index: int = 0
    offset: int = 0
    show_title: str | None = None
    imported_ids: list[str] = Field(default_factory=list)
    totals: ImportStats = Field(default_factory=ImportStats)
    failed_libraries: list[str] = Field(default_factory=list)
    library_complete: bool = False
    complete: bool = False
    orphans: OrphanResult | None = None

    @property
    def current_library_id(self) -> str | None:
        """Library the next batch will read from."""
        if self.library_index < len(self.library_ids):
            return self.library_ids[self.library_index]
        return None

    @property
    def single_library(self) -> bool:
        """Whether exactly one library was requested."""
        return len(self.library_ids) == 1


@dataclass
class SendResult:
    """Outcome of pushing a local poster to Plex."""

    success: bool
    message: str
    rating_key: str | None = None
    method: str | None = None
    locked: bool = False
    label_removed: bool | None = None


@dataclass
class ExportResult:
    """Outcome of sending every managed poster of a media type to Plex."""

    successful: int = 0
    failed: int = 0
    labels_removed: int = 0
    labels_failed: int = 0
    errors: list[str] = field(default_factory=list)


class PosterImporter:
    """Imports Plex posters into the local poster directories."""

    def __init__(
        self,
        client: PlexClient,
        store: ValidIdStore,
        poster_dir: Path,
        batch_size: int = DEFAULT_BATCH_SIZE,
        mode: OverwriteMode = OverwriteMode.OVERWRITE,
        reconciler: Reconciler | None = None,
        remove_overlay_label: bool = False,
    ) -> None:
        """Initialize the importer.

        Args:
            client: Plex client.
            store: Valid-ID store to record imported ids in.
            poster_dir: Root directory holding one folder per media type.
            batch_size: Items (or shows, for seasons) fetched per batch.
            mode: Handling of posters that already exist under their canonical name.
            reconciler: Reconciler to use; one is created over `store` if omitted.
            remove_overlay_label: Strip the Overlay label after sending a poster.
        """
        self.client = client
        self.store = store
        self.poster_dir = poster_dir
        self.batch_size = max(1, batch_size)
        self.mode = mode
        self.reconciler = reconciler or Reconciler(store)
        self.remove_overlay_label = remove_overlay_label
        self._libraries: dict[str, PlexLibrary] | None = None

    def directory_for(self, media_type: MediaType) -> Path:
        """Get the poster directory for a media type."""
        return self.poster_dir / POLICIES[media_type].directory_name

    def _library(self, library_id: str) -> PlexLibrary:
        """Look up a library by id, listing libraries from Plex once."""
        if self._libraries is None:
            self._libraries = {lib.key: lib for lib in self.client.get_libraries()}
        try:
            return self._libraries[library_id]
        except KeyError:
            raise RemoteApiError(f"Library {library_id} not found on the Plex server") from None

    def remember_libraries(self, libraries: Iterable[PlexLibrary]) -> None:
        """Make libraries known to cursors resumed in this process."""
        if self._libraries is None:
            self._libraries = {}
        self._libraries.update({lib.key: lib for lib in libraries})

    # Single items

    def _index_managed(self, directory: Path) -> dict[str, Path]:
        """Map ids to the managed poster files already in a directory."""
        index: dict[str, Path] = {}
        if not directory.is_dir():
            return index
        for path in sorted(directory.iterdir(), key=lambda p: p.name):
            if not path.is_file() or not is_managed(path.name):
                continue
            item_id = extract_id(path.name)
            if item_id is not None:
                index.setdefault(item_id, path)
        return index

    def _write_poster(self, path: Path, data: bytes) -> None:
        try:
            path.write_bytes(data)
        except OSError as e:
            raise FilesystemError(f"Failed to write {path.name}: {e}") from e

    def _import_item(
        self,
        item: PlexItem,
        library: PlexLibrary,
        policy: MediaPolicy,
        directory: Path,
        existing: dict[str, Path],
    ) -> str:
        """Bring one item's poster file up to date.

        Returns:
            The ImportStats counter the item falls under.
        """
        filename = policy.poster_name(item, library).filename
        target = directory / filename

        current = existing.get(item.rating_key)
        if current is not None and current.name != filename and not target.exists():
            # Stale metadata in the name (timestamp, library, year, type marker, title)
            try:
                current.rename(target)
            except OSError as e:
                logger.warning("Failed to rename %s, downloading instead: %s", current.name, e)
            else:
                logger.debug("Renamed %s -> %s", current.name, filename)
                existing[item.rating_key] = target
                return "renamed"

        if target.exists():
            if self.mode == OverwriteMode.SKIP:
                return "skipped"
            data = self.client.fetch_image(item.thumb or "")
            try:
                unchanged = target.read_bytes() == data
            except OSError as e:
                raise FilesystemError(f"Failed to read {target.name}: {e}") from e
            if unchanged:
                return "unchanged"
            self._write_poster(target, data)
            return "successful"

        data = self.client.fetch_image(item.thumb or "")
        self._write_poster(target, data)
        existing[item.rating_key] = target
        logger.debug("Downloaded %s", filename)
        return "successful"

    def import_items(
        self,
        items: Iterable[PlexItem],
        library: PlexLibrary,
        policy: MediaPolicy,
    ) -> ImportStats:
        """Import the posters of a batch of items from one library.

        Per-item failures (malformed records, download or write errors) are
        counted and reported in the result, never raised.

        Args:
            items: Items from one page of a Plex listing.
            library: Library the items belong to.
            policy: Media policy for the items.

        Returns:
            Counts for the batch, with the id of every item that has one.

        Raises:
            FilesystemError: If the poster directory cannot be created.
        """
        stats = ImportStats()
        directory = self.directory_for(policy.media_type)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Failed to create {directory}: {e}") from e

        existing = self._index_managed(directory)

        for item in items:
            try:
                item.check_required()
                outcome = self._import_item(item, library, policy, directory, existing)
            except MalformedItemError as e:
                logger.warning("Skipping malformed item: %s", e)
                stats.failed += 1
                stats.errors.append(str(e))
                outcome = None
            except (RemoteApiError, FilesystemError) as e:
                logger.warning("Failed to import %s: %s", item.display_title, e)
                stats.failed += 1
                stats.errors.append(f"Failed to import {item.display_title}: {e}")
                outcome = None

            # The item exists in Plex even when its poster failed to import
            if item.rating_key:
                stats.imported_ids.append(item.rating_key)
            if outcome is None:
                continue

            if outcome == "renamed":
                stats.renamed += 1
                stats.successful += 1
            elif outcome == "skipped":
                stats.skipped += 1
            elif outcome == "unchanged":
                stats.unchanged += 1
            else:
                stats.successful += 1

        return stats

    # Batches

    def _fetch_page(self, policy: MediaPolicy, library: PlexLibrary, cursor: BatchCursor) -> ItemPage:
        """Fetch the next page of items for the cursor's current library."""
        if policy.media_type == MediaType.COLLECTION:
            return self.client.get_collections_page(library.key, cursor.offset, self.batch_size)

        if policy.media_type == MediaType.SEASON:
            shows = self.client.get_items_page(
                library.key, cursor.offset, self.batch_size, require_thumb=False
            )
            seasons: list[PlexItem] = []
            for show in shows.items:
                if cursor.show_title and show.title != cursor.show_title:
                    continue
                for season in self.client.get_seasons(show.rating_key):
                    if not season.parent_title:
                        season = season.model_copy(update={"parent_title": show.title})
                    seasons.append(season)
            return shows.model_copy(update={"items": seasons})

        return self.client.get_items_page(library.key, cursor.offset, self.batch_size)

    def start(
        self,
        media_type: MediaType,
        libraries: list[PlexLibrary],
        show_title: str | None = None,
    ) -> BatchCursor:
        """Create the cursor for importing a media type from some libraries.

        Libraries whose type does not feed the media type are left out.
        """
        selected = libraries_for(media_type, libraries)
        self.remember_libraries(selected)
        cursor = BatchCursor(
            media_type=media_type,
            library_ids=[lib.key for lib in selected],
            show_title=show_title,
        )
        if not cursor.library_ids:
            cursor.complete = True
        return cursor

    def run_batch(self, cursor: BatchCursor) -> BatchCursor:
        """Import one page and return the advanced cursor.

        The stored ids of a library are cleared when its first page is read
        and re-populated page by page. A single-show season import only adds
        to them. After the last page of the last library,
        orphan detection runs once against every id imported through the cursor.

        Args:
            cursor: Position to continue from.

        Returns:
            A new cursor; the input is not modified.

        Raises:
            RemoteApiError: If the page cannot be fetched. Progress up to the
                previous batch is kept; `skip_library` moves past the failure.
        """
        if cursor.complete:
            return cursor

        cursor = cursor.model_copy(deep=True)
        cursor.library_complete = False
        policy = POLICIES[cursor.media_type]
        library = self._library(cursor.library_ids[cursor.library_index])

        if not self.store.session_active:
            self.store.open_session()

        if cursor.offset == 0:
            logger.info("Importing %s posters from '%s'", cursor.media_type.value, library.title)

        page = self._fetch_page(policy, library, cursor)
        if cursor.offset == 0 and not cursor.show_title:
            # A library's old ids survive a failed first fetch. A single-show
            # import sees only part of the library, so it merges instead.
            self.store.clear_stored_ids(cursor.media_type, library.key)
        stats = self.import_items(page.items, library, policy)
        self.store.store_valid_ids(stats.imported_ids, cursor.media_type, library.key)

        cursor.totals.merge(stats)
        cursor.imported_ids.extend(stats.imported_ids)

        if page.more_available:
            cursor.offset = page.next_offset
            return cursor

        self.store.sync_to_storage()
        return self._advance_library(cursor)

    def skip_library(self, cursor: BatchCursor, error: str) -> BatchCursor:
        """Abandon the cursor's current library after a failed batch."""
        cursor = cursor.model_copy(deep=True)
        library_id = cursor.current_library_id
        if library_id is not None:
            logger.error("Skipping library %s: %s", library_id, error)
            cursor.failed_libraries.append(library_id)
        cursor.totals.errors.append(error)
        return self._advance_library(cursor)

    def _advance_library(self, cursor: BatchCursor) -> BatchCursor:
        cursor.library_index += 1
        cursor.offset = 0
        cursor.library_complete = True
        if cursor.library_index < len(cursor.library_ids):
            return cursor

        if cursor.failed_libraries:
            logger.warning(
                "Skipping orphan detection for %s: %d library(ies) failed to import",
                cursor.media_type.value,
                len(cursor.failed_libraries),
            )
        else:
            cursor.orphans = self.reconciler.mark_orphaned_posters(
                self.directory_for(cursor.media_type),
                cursor.imported_ids,
                self._scope(cursor),
            )
        self.store.sync_to_storage()
        cursor.complete = True
        return cursor

    def _scope(self, cursor: BatchCursor) -> ReconcileScope:
        """Build the reconciliation scope for a finished cursor."""
        libraries = [self._library(library_id) for library_id in cursor.library_ids]
        kinds = {lib.type for lib in libraries}
        return ReconcileScope(
            media_type=cursor.media_type,
            library_ids=list(cursor.library_ids),
            library_name=libraries[0].title if len(libraries) == 1 else None,
            library_kind=kinds.pop() if len(kinds) == 1 else None,
            show_title=cursor.show_title,
        )

    def import_media_type(
        self,
        media_type: MediaType,
        libraries: list[PlexLibrary],
        show_title: str | None = None,
    ) -> BatchCursor:
        """Import a media type from some libraries, start to finish.

        A library whose listing fails is skipped; the others still import.

        Returns:
            The completed cursor with totals and the orphan detection result.
        """
        cursor = self.start(media_type, libraries, show_title=show_title)
        while not cursor.complete:
            try:
                cursor = self.run_batch(cursor)
            except RemoteApiError as e:
                cursor = self.skip_library(cursor, str(e))
        return cursor

    # Maintenance

    def cleanup_collections(self, libraries: list[PlexLibrary]) -> CleanupResult:
        """Remove duplicate collection posters and standardize the survivors.

        Current collection records from every movie and show library give the
        canonical names that survivors are renamed to.
        """
        policy = POLICIES[MediaType.COLLECTION]
        known: dict[str, PosterName] = {}
        for library in libraries_for(MediaType.COLLECTION, libraries):
            try:
                collections = self.client.get_all_collections(library.key, self.batch_size)
            except RemoteApiError as e:
                logger.warning("Could not list collections in '%s': %s", library.title, e)
                continue
            for item in collections:
                if item.rating_key and item.title:
                    known[item.rating_key] = policy.poster_name(item, library)

        return self.reconciler.cleanup_duplicates(self.directory_for(MediaType.COLLECTION), known)

    # Push to Plex

    def send_to_plex(self, path: Path, media_type: MediaType | None = None) -> SendResult:
        """Upload a local poster to its Plex item and lock it there.

        Args:
            path: Poster file; its [id] token names the Plex item.
            media_type: Media type of the item. Inferred from the parent
                directory name when omitted.

        Returns:
            Outcome of the upload, lock and label removal.
        """
        if media_type is None:
            media_type = media_type_for_directory(path.parent.name)
        if media_type is None:
            return SendResult(False, f"Cannot tell the media type of {path}")

        rating_key = extract_id(path.name)
        if rating_key is None:
            return SendResult(False, f"No [id] found in {path.name}")

        try:
            data = path.read_bytes()
        except OSError as e:
            return SendResult(False, f"Failed to read {path.name}: {e}", rating_key=rating_key)

        try:
            method = self.client.upload_poster(rating_key, data, media_type)
        except RemoteApiError as e:
            return SendResult(False, str(e), rating_key=rating_key)

        try:
            self.client.refresh_metadata(rating_key)
        except RemoteApiError as e:
            logger.warning("Metadata refresh failed for %s: %s", rating_key, e)

        result = SendResult(True, "Poster sent to Plex", rating_key=rating_key, method=method)

        try:
            self.client.lock_poster(rating_key, media_type)
            result.locked = True
        except RemoteApiError as e:
            logger.warning("Failed to lock poster for %s: %s", rating_key, e)
            result.message += f"; lock failed: {e}"

        if self.remove_overlay_label:
            try:
                self.client.remove_label(rating_key, media_type, OVERLAY_LABEL)
                result.label_removed = True
            except RemoteApiError as e:
                logger.warning("Failed to remove %s label from %s: %s", OVERLAY_LABEL, rating_key, e)
                result.label_removed = False
                result.message += f"; label removal failed: {e}"

        return result

    def export_to_plex(self, media_type: MediaType) -> ExportResult:
        """Send every managed poster of a media type back to Plex.

        Orphaned and unmanaged files are left out. A failed poster is
        recorded and the rest are still sent.
        """
        result = ExportResult()
        directory = self.directory_for(media_type)
        if not directory.is_dir():
            return result

        paths = sorted(
            (p for p in directory.iterdir() if p.is_file() and is_managed(p.name) and extract_id(p.name)),
            key=lambda p: p.name,
        )
        logger.info("Exporting %d %s posters to Plex", len(paths), media_type.value)
        for path in paths:
            sent = self.send_to_plex(path, media_type)
            if not sent.success:
                result.failed += 1
                result.errors.append(f"{path.name}: {sent.message}")
                continue
            result.successful += 1
            if sent.label_removed is True:
                result.labels_removed += 1
            elif sent.label_removed is False:
                result.labels_failed += 1
                result.errors.append(f"{path.name}: {OVERLAY_LABEL} label not removed")
        return result
