"""Registry of Plex libraries seen per media type.

Stored as `plex_libraries.json`:

    {
        "movie": {
            "1": {"title": "Movies", "type": "movie", "last_seen": "2025-01-25T10:00:00+00:00"}
        }
    }

Comparing the registry against the current library listing finds libraries
that were removed from Plex, so their ids can be dropped from the valid-ID
store even though no scan will ever visit them again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from posterkeep.errors import FilesystemError
from posterkeep.naming import MediaType
from posterkeep.plex.models import PlexLibrary
from posterkeep.store import ValidIdStore

logger = logging.getLogger(__name__)

LIBRARIES_FILENAME = "plex_libraries.json"

# Library types whose items feed each media type
LIBRARY_KINDS: dict[MediaType, tuple[str, ...]] = {
    MediaType.MOVIE: ("movie",),
    MediaType.SHOW: ("show",),
    MediaType.SEASON: ("show",),
    MediaType.COLLECTION: ("movie", "show"),
}


@dataclass
class LibraryRecord:
    """A library as last seen in Plex."""

    title: str
    type: str
    last_seen: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "title": self.title,
            "type": self.type,
            "last_seen": self.last_seen.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LibraryRecord:
        """Create from dictionary."""
        last_seen = data.get("last_seen")
        return cls(
            title=data.get("title", ""),
            type=data.get("type", ""),
            last_seen=datetime.fromisoformat(last_seen) if last_seen else datetime.now(UTC),
        )


@dataclass
class MissingLibrary:
    """A previously seen library that is gone from Plex."""

    id: str
    title: str


def libraries_for(media_type: MediaType, libraries: list[PlexLibrary]) -> list[PlexLibrary]:
    """Filter libraries down to the types that feed a media type."""
    kinds = LIBRARY_KINDS[media_type]
    return [library for library in libraries if library.type in kinds]


class LibraryRegistry:
    """Persisted record of which libraries exist per media type."""

    def __init__(self, data_dir: Path, store: ValidIdStore) -> None:
        """Initialize the registry.

        Args:
            data_dir: Directory holding the sidecar state files.
            store: Valid-ID store to clear when a library disappears.
        """
        self.path = data_dir / LIBRARIES_FILENAME
        self.store = store
        self._data: dict[str, dict[str, LibraryRecord]] | None = None

    def _load(self) -> dict[str, dict[str, LibraryRecord]]:
        """Load the registry from disk (lazy loading)."""
        if self._data is not None:
            return self._data

        self._data = {}
        if not self.path.exists():
            return self._data

        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable library registry %s: %s", self.path, e)
            return self._data

        for media_type, libraries in raw.items() if isinstance(raw, dict) else []:
            if isinstance(libraries, dict):
                self._data[media_type] = {
                    str(library_id): LibraryRecord.from_dict(entry)
                    for library_id, entry in libraries.items()
                    if isinstance(entry, dict)
                }
        return self._data

    def _save(self) -> None:
        """Write the registry to disk."""
        data = self._load()
        serializable = {
            media_type: {library_id: record.to_dict() for library_id, record in libraries.items()}
            for media_type, libraries in data.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(serializable, f, indent=2)
        except OSError as e:
            raise FilesystemError(f"Failed to write {self.path}: {e}") from e

    def get_libraries(self, media_type: MediaType) -> dict[str, LibraryRecord]:
        """Get the recorded libraries for a media type."""
        return dict(self._load().get(media_type.value, {}))

    def record_libraries_seen(self, libraries: list[PlexLibrary], media_type: MediaType) -> None:
        """Upsert the libraries relevant to a media type with last_seen = now."""
        entries = self._load().setdefault(media_type.value, {})
        now = datetime.now(UTC)
        for library in libraries_for(media_type, libraries):
            entries[library.key] = LibraryRecord(
                title=library.title,
                type=library.type,
                last_seen=now,
            )
        self._save()

    def detect_missing_libraries(
        self, current_libraries: list[PlexLibrary], media_type: MediaType
    ) -> list[MissingLibrary]:
        """Find recorded libraries absent from the current listing.

        Each missing library has its stored ids cleared from the valid-ID
        store and is removed from the registry.

        Args:
            current_libraries: Libraries currently reported by Plex.
            media_type: Media type to check.

        Returns:
            The libraries that disappeared.
        """
        entries = self._load().get(media_type.value, {})
        current_ids = {library.key for library in current_libraries}

        missing = [
            MissingLibrary(id=library_id, title=record.title)
            for library_id, record in entries.items()
            if library_id not in current_ids
        ]
        for library in missing:
            logger.info(
                "Library '%s' (%s) no longer exists, clearing its %s ids",
                library.title,
                library.id,
                media_type.value,
            )
            self.store.clear_stored_ids(media_type, library.id)
            del entries[library.id]

        if missing:
            self._save()
        return missing

    def refresh(
        self, current_libraries: list[PlexLibrary], media_type: MediaType
    ) -> list[MissingLibrary]:
        """Record the current libraries, then drop the ones that vanished."""
        self.record_libraries_seen(current_libraries, media_type)
        return self.detect_missing_libraries(current_libraries, media_type)
