"""Persisted valid-ID sets per media type and library.

The store is a single JSON document next to the other sidecar files:

    {
        "movie": {
            "1": ["12345", "12346"],
            "7": ["5541"]
        },
        "collection": {
            "1": ["999"]
        }
    }

A session overlay mirrors the document in memory for the length of one
import run. Writes go to both the overlay and the file, reads union the
two, and `sync_to_storage()` flushes the overlay wholesale at the end of
each library and request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from posterkeep.errors import FilesystemError
from posterkeep.naming import MediaType

logger = logging.getLogger(__name__)

VALID_IDS_FILENAME = "plex_valid_ids.json"

IdMap = dict[str, dict[str, set[str]]]


def _key(media_type: MediaType | str) -> str:
    return media_type.value if isinstance(media_type, MediaType) else str(media_type)


class ValidIdStore:
    """Valid-ID sets keyed by (media type, library id)."""

    def __init__(self, data_dir: Path) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory holding the sidecar state files.
        """
        self.path = data_dir / VALID_IDS_FILENAME
        self._data: IdMap | None = None
        self._session: IdMap | None = None

    def _load(self) -> IdMap:
        """Load the persisted document (lazy loading)."""
        if self._data is not None:
            return self._data

        self._data = {}
        if not self.path.exists():
            return self._data

        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            # Corrupted file - start fresh
            logger.warning("Ignoring unreadable valid-ID store %s: %s", self.path, e)
            return self._data

        if isinstance(raw, dict):
            for media_type, libraries in raw.items():
                if not isinstance(libraries, dict):
                    continue
                self._data[media_type] = {
                    str(library_id): {str(item_id) for item_id in ids}
                    for library_id, ids in libraries.items()
                    if isinstance(ids, list)
                }
        return self._data

    def _save(self) -> None:
        """Write the persisted document to disk.

        Raises:
            FilesystemError: If the file cannot be written.
        """
        data = self._load()
        serializable = {
            media_type: {library_id: sorted(ids) for library_id, ids in libraries.items()}
            for media_type, libraries in data.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(serializable, f, indent=2)
        except OSError as e:
            raise FilesystemError(f"Failed to write {self.path}: {e}") from e

    @property
    def session_active(self) -> bool:
        """Whether a session overlay is open."""
        return self._session is not None

    def open_session(self) -> None:
        """Seed the session overlay from persisted storage."""
        data = self._load()
        self._session = {
            media_type: {library_id: set(ids) for library_id, ids in libraries.items()}
            for media_type, libraries in data.items()
        }

    def close_session(self) -> None:
        """Flush and drop the session overlay."""
        if self._session is not None:
            self.sync_to_storage()
        self._session = None

    def sync_to_storage(self) -> None:
        """Write the session overlay to storage, replacing its contents.

        The overlay is authoritative for the current run, so it is written
        wholesale rather than merged entry by entry.
        """
        if self._session is None:
            return
        self._data = {
            media_type: {library_id: set(ids) for library_id, ids in libraries.items()}
            for media_type, libraries in self._session.items()
        }
        self._save()
        logger.debug("Synced valid-ID session to %s", self.path)

    def store_valid_ids(
        self,
        ids: Iterable[str],
        media_type: MediaType | str,
        library_id: str,
        replace: bool = False,
    ) -> None:
        """Record ids seen as valid for a library.

        The document is written before returning so a read later in the same
        run sees the new ids.

        Args:
            ids: Item ids from the current scan.
            media_type: Media type the ids belong to.
            library_id: Library the ids were seen in.
            replace: Overwrite the library's set instead of merging into it.
        """
        new_ids = {str(item_id) for item_id in ids}
        targets = [self._load()]
        if self._session is not None:
            targets.append(self._session)

        for target in targets:
            libraries = target.setdefault(_key(media_type), {})
            if replace:
                libraries[str(library_id)] = set(new_ids)
            else:
                libraries.setdefault(str(library_id), set()).update(new_ids)

        self._save()

    def get_library_ids(self, media_type: MediaType | str, library_id: str) -> set[str]:
        """Get the stored ids for one library."""
        result = set(self._load().get(_key(media_type), {}).get(str(library_id), set()))
        if self._session is not None:
            result |= self._session.get(_key(media_type), {}).get(str(library_id), set())
        return result

    def get_all_valid_ids(self, media_type: MediaType | str) -> set[str]:
        """Get the union of stored ids across every library of a media type."""
        result: set[str] = set()
        sources = [self._load()]
        if self._session is not None:
            sources.append(self._session)
        for source in sources:
            for ids in source.get(_key(media_type), {}).values():
                result |= ids
        return result

    def clear_stored_ids(self, media_type: MediaType | str, library_id: str) -> None:
        """Forget every id stored for a library."""
        for target in (self._load(), self._session):
            if target is None:
                continue
            libraries = target.get(_key(media_type))
            if libraries is not None:
                libraries.pop(str(library_id), None)
        self._save()
        logger.debug("Cleared stored %s ids for library %s", _key(media_type), library_id)

    def clear_all(self) -> int:
        """Forget every stored id.

        Returns:
            Number of ids removed.
        """
        count = sum(len(ids) for libraries in self._load().values() for ids in libraries.values())
        self._data = {}
        if self._session is not None:
            self._session = {}
        self._save()
        return count

    def summary(self) -> dict[str, dict[str, int]]:
        """Get id counts per media type and library."""
        data = self._load()
        return {
            media_type: {library_id: len(ids) for library_id, ids in libraries.items()}
            for media_type, libraries in data.items()
        }
