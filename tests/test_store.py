"""Tests for the valid-ID store."""

import json
import tempfile
from pathlib import Path

from posterkeep.naming import MediaType
from posterkeep.store import VALID_IDS_FILENAME, ValidIdStore


class TestValidIdStore:
    """Tests for ValidIdStore persistence."""

    def test_empty_store(self) -> None:
        """Test that a missing file reads as empty."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            assert store.get_all_valid_ids(MediaType.MOVIE) == set()
            assert store.get_library_ids(MediaType.MOVIE, "1") == set()

    def test_store_and_read_back(self) -> None:
        """Test that stored ids are visible immediately and after reload."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["10", "11"], MediaType.MOVIE, "1")
            store.store_valid_ids(["20"], MediaType.MOVIE, "2")

            assert store.get_library_ids(MediaType.MOVIE, "1") == {"10", "11"}
            assert store.get_all_valid_ids(MediaType.MOVIE) == {"10", "11", "20"}

            reloaded = ValidIdStore(Path(tmpdir))
            assert reloaded.get_all_valid_ids(MediaType.MOVIE) == {"10", "11", "20"}

    def test_file_format(self) -> None:
        """Test the on-disk document is media type -> library -> sorted ids."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["b", "a"], MediaType.COLLECTION, "3")

            with open(Path(tmpdir) / VALID_IDS_FILENAME, encoding="utf-8") as f:
                data = json.load(f)
            assert data == {"collection": {"3": ["a", "b"]}}

    def test_merge_and_replace(self) -> None:
        """Test that storing merges by default and replaces on request."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["1"], MediaType.SHOW, "5")
            store.store_valid_ids(["2"], MediaType.SHOW, "5")
            assert store.get_library_ids(MediaType.SHOW, "5") == {"1", "2"}

            store.store_valid_ids(["3"], MediaType.SHOW, "5", replace=True)
            assert store.get_library_ids(MediaType.SHOW, "5") == {"3"}

    def test_media_types_are_separate(self) -> None:
        """Test that ids of one media type never validate another."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["1"], MediaType.SHOW, "5")
            assert store.get_all_valid_ids(MediaType.SEASON) == set()

    def test_clear_stored_ids(self) -> None:
        """Test clearing one library leaves the others alone."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["1"], MediaType.MOVIE, "1")
            store.store_valid_ids(["2"], MediaType.MOVIE, "2")

            store.clear_stored_ids(MediaType.MOVIE, "1")

            assert store.get_all_valid_ids(MediaType.MOVIE) == {"2"}
            assert ValidIdStore(Path(tmpdir)).get_all_valid_ids(MediaType.MOVIE) == {"2"}

    def test_corrupt_file_reads_as_empty(self) -> None:
        """Test that an unreadable document is ignored."""
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / VALID_IDS_FILENAME).write_text("{not json", encoding="utf-8")
            store = ValidIdStore(Path(tmpdir))
            assert store.get_all_valid_ids(MediaType.MOVIE) == set()

    def test_clear_all_and_summary(self) -> None:
        """Test counting and clearing everything."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["1", "2"], MediaType.MOVIE, "1")
            store.store_valid_ids(["3"], MediaType.COLLECTION, "1")

            assert store.summary() == {"movie": {"1": 2}, "collection": {"1": 1}}
            assert store.clear_all() == 3
            assert store.summary() == {}


class TestValidIdSession:
    """Tests for the in-memory session overlay."""

    def test_session_seeded_from_storage(self) -> None:
        """Test that opening a session starts from the persisted ids."""
        with tempfile.TemporaryDirectory() as tmpdir:
            ValidIdStore(Path(tmpdir)).store_valid_ids(["1"], MediaType.MOVIE, "1")

            store = ValidIdStore(Path(tmpdir))
            store.open_session()
            assert store.session_active
            assert store.get_library_ids(MediaType.MOVIE, "1") == {"1"}

    def test_clear_applies_to_session(self) -> None:
        """Test a cleared library stays cleared in both layers."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["1"], MediaType.MOVIE, "1")
            store.open_session()

            store.clear_stored_ids(MediaType.MOVIE, "1")
            store.store_valid_ids(["2"], MediaType.MOVIE, "1")

            assert store.get_library_ids(MediaType.MOVIE, "1") == {"2"}

    def test_sync_replaces_storage(self) -> None:
        """Test that syncing writes the overlay wholesale."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ValidIdStore(Path(tmpdir))
            store.store_valid_ids(["1"], MediaType.MOVIE, "1")
            store.open_session()
            store.clear_stored_ids(MediaType.MOVIE, "1")
            store.store_valid_ids(["9"], MediaType.MOVIE, "1")
            store.close_session()

            assert not store.session_active
            reloaded = ValidIdStore(Path(tmpdir))
            assert reloaded.get_library_ids(MediaType.MOVIE, "1") == {"9"}
