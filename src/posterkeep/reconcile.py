"""Orphan detection and duplicate cleanup for poster directories.

A reconciliation pass looks at every managed poster in one directory and
retags as orphaned the ones whose id no longer validates, or which are
legacy files without an addedAt timestamp. A scope filter keeps each pass
to the files of the library (or collection type, or show) being imported,
so a pass for one library never orphans another library's posters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from posterkeep.naming import (
    ORPHANED_TAG,
    PLEX_TAG,
    MediaType,
    PosterName,
    extract_id,
    has_library_name,
    has_show_title,
    has_timestamp,
    has_type_marker,
    is_managed,
    is_orphaned,
    retag_status,
)
from posterkeep.store import ValidIdStore

logger = logging.getLogger(__name__)

REASON_COLLECTION_MISSING_TIMESTAMP = "collection_missing_timestamp"
REASON_ID_NOT_VALID = "id_not_valid"
REASON_MISSING_TIMESTAMP = "missing_timestamp"


@dataclass
class ReconcileScope:
    """The library context a reconciliation pass is limited to."""

    media_type: MediaType
    library_ids: list[str] = field(default_factory=list)
    library_name: str | None = None
    library_kind: str | None = None  # "movie" or "show"; used for collections
    show_title: str | None = None  # seasons of a single show

    @property
    def single_library(self) -> bool:
        """Whether exactly one library was requested."""
        return len(self.library_ids) == 1


@dataclass
class OrphanDetail:
    """One file retagged by a reconciliation pass."""

    old_name: str
    new_name: str
    reason: str


@dataclass
class OrphanResult:
    """Outcome of a reconciliation pass."""

    orphaned: int = 0
    old_format: int = 0  # orphaned for lacking a timestamp
    unmarked: int = 0  # retag failed on the filesystem
    details: list[OrphanDetail] = field(default_factory=list)


@dataclass
class CleanupResult:
    """Outcome of a duplicate cleanup pass."""

    duplicates_found: int = 0
    deleted: int = 0
    renamed: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class DeleteResult:
    """Outcome of deleting orphaned posters."""

    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def should_process_file(filename: str, scope: ReconcileScope) -> bool:
    """Check whether a file belongs to the library context of a pass.

    Args:
        filename: Poster filename.
        scope: Library context of the current pass.

    Returns:
        True if the pass may retag this file.
    """
    if scope.single_library and scope.library_name:
        if scope.media_type == MediaType.COLLECTION:
            # Collections carry a type marker instead of a library name
            if scope.library_kind and not has_type_marker(filename, scope.library_kind):
                return False
        elif not has_library_name(filename, scope.library_name):
            return False

    if (
        not scope.single_library
        and scope.media_type == MediaType.COLLECTION
        and scope.library_kind
        and not has_type_marker(filename, scope.library_kind)
    ):
        return False

    if scope.media_type == MediaType.SEASON and scope.show_title:
        if not has_show_title(filename, scope.show_title):
            return False

    return True


def _poster_files(directory: Path) -> list[Path]:
    """List regular files in a directory in a stable order."""
    return sorted((path for path in directory.iterdir() if path.is_file()), key=lambda p: p.name)


def orphaned_posters(directory: Path) -> list[Path]:
    """List the files in a directory tagged as orphaned."""
    if not directory.is_dir():
        return []
    return [path for path in _poster_files(directory) if is_orphaned(path.name)]


class Reconciler:
    """Marks orphaned posters and cleans up duplicates."""

    def __init__(self, store: ValidIdStore) -> None:
        self.store = store

    def _retag(self, path: Path, reason: str, result: OrphanResult) -> bool:
        """Retag a managed file as orphaned, recording the outcome."""
        new_name = retag_status(path.name, PLEX_TAG, ORPHANED_TAG)
        target = path.with_name(new_name)
        if target.exists():
            # An earlier orphan already holds the name; it is never replaced
            logger.warning("Cannot mark %s as orphaned: %s already exists", path.name, new_name)
            result.unmarked += 1
            return False
        try:
            path.rename(target)
        except OSError as e:
            logger.warning("Failed to mark %s as orphaned: %s", path.name, e)
            result.unmarked += 1
            return False

        logger.info("Orphaned %s (%s)", path.name, reason)
        result.orphaned += 1
        result.details.append(OrphanDetail(old_name=path.name, new_name=new_name, reason=reason))
        return True

    def mark_orphaned_posters(
        self,
        directory: Path,
        current_ids: Iterable[str],
        scope: ReconcileScope,
    ) -> OrphanResult:
        """Retag stale posters in a directory as orphaned.

        Args:
            directory: Poster directory for the scope's media type.
            current_ids: Ids seen by the scan that just completed.
            scope: Library context of this pass.

        Returns:
            Counts and per-file details of the retags.
        """
        result = OrphanResult()
        if not directory.is_dir():
            return result

        if scope.single_library:
            valid_ids = set(current_ids)
        else:
            valid_ids = set(current_ids) | self.store.get_all_valid_ids(scope.media_type)

        # Managed, in-scope files with an extractable id
        candidates: list[tuple[Path, str]] = []
        for path in _poster_files(directory):
            name = path.name
            if is_orphaned(name) or not is_managed(name):
                continue
            if not should_process_file(name, scope):
                continue
            item_id = extract_id(name)
            if item_id is None:
                continue
            candidates.append((path, item_id))

        single_library_collections = (
            scope.single_library and scope.media_type == MediaType.COLLECTION
        )
        handled: set[Path] = set()

        if single_library_collections and scope.library_kind:
            for path, _item_id in candidates:
                if has_type_marker(path.name, scope.library_kind) and not has_timestamp(path.name):
                    self._retag(path, REASON_COLLECTION_MISSING_TIMESTAMP, result)
                    handled.add(path)

        for path, item_id in candidates:
            if path in handled:
                continue
            if item_id not in valid_ids:
                self._retag(path, REASON_ID_NOT_VALID, result)
                handled.add(path)

        if not single_library_collections:
            for path, _item_id in candidates:
                if path in handled or has_timestamp(path.name):
                    continue
                if self._retag(path, REASON_MISSING_TIMESTAMP, result):
                    result.old_format += 1
                handled.add(path)

        if result.orphaned or result.unmarked:
            logger.info(
                "Reconciled %s: %d orphaned (%d old format), %d failed",
                directory,
                result.orphaned,
                result.old_format,
                result.unmarked,
            )
        return result

    def delete_orphaned_posters(self, directory: Path) -> DeleteResult:
        """Delete every file tagged as orphaned in a directory.

        Managed and unmanaged files are never touched; only names carrying
        the orphaned status tag are removed.
        """
        result = DeleteResult()
        for path in orphaned_posters(directory):
            try:
                path.unlink()
            except OSError as e:
                result.errors.append(f"Failed to delete {path.name}: {e}")
                continue
            result.deleted.append(path.name)
            logger.info("Deleted orphaned poster %s", path.name)
        return result

    def cleanup_duplicates(
        self,
        directory: Path,
        known: Mapping[str, PosterName] | None = None,
    ) -> CleanupResult:
        """Keep one poster per id and bring the survivor up to date.

        Files are grouped by embedded id. In each group the best file is kept,
        preferring a non-orphaned file with a timestamp, then any non-orphaned
        file, then any file with a timestamp, then the first by name; the rest
        are deleted. When the kept file is orphaned or lacks a timestamp and
        `known` has a current record for its id, the file is renamed to that
        record's canonical name.

        Args:
            directory: Poster directory to clean.
            known: Current Plex records by id, as canonical poster names.

        Returns:
            Counts of duplicates, deletions and renames.
        """
        result = CleanupResult()
        if not directory.is_dir():
            return result
        known = known or {}

        groups: dict[str, list[Path]] = {}
        for path in _poster_files(directory):
            if not (is_managed(path.name) or is_orphaned(path.name)):
                continue
            item_id = extract_id(path.name)
            if item_id is not None:
                groups.setdefault(item_id, []).append(path)

        for item_id, paths in groups.items():
            # sorted() is stable, so ties keep the first file by name
            ranked = sorted(
                paths,
                key=lambda p: (not is_orphaned(p.name), has_timestamp(p.name)),
                reverse=True,
            )
            keep = ranked[0]

            if len(paths) > 1:
                result.duplicates_found += len(paths) - 1
                for duplicate in ranked[1:]:
                    try:
                        duplicate.unlink()
                    except OSError as e:
                        result.errors.append(f"Failed to delete {duplicate.name}: {e}")
                        continue
                    result.deleted += 1
                    logger.info("Deleted duplicate %s (kept %s)", duplicate.name, keep.name)

            record = known.get(item_id)
            if record is None or (is_managed(keep.name) and has_timestamp(keep.name)):
                continue

            extension = keep.suffix.lstrip(".") or record.extension
            target = keep.with_name(replace(record, extension=extension).filename)
            if target == keep:
                continue
            if target.exists():
                result.errors.append(f"Cannot rename {keep.name}: {target.name} already exists")
                continue
            try:
                keep.rename(target)
            except OSError as e:
                result.errors.append(f"Failed to rename {keep.name}: {e}")
                continue
            result.renamed += 1
            logger.info("Standardized %s -> %s", keep.name, target.name)

        return result
