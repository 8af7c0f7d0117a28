"""Tests for the CLI module."""

import re
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from posterkeep import __version__
from posterkeep.cli import main
from posterkeep.config import reset_config
from posterkeep.naming import MediaType
from posterkeep.plex import PlexLibrary
from posterkeep.store import ValidIdStore


def _write_config(root: Path) -> Path:
    config_path = root / "posterkeep.ini"
    config_path.write_text(
        "[plex]\nurl = http://plex:32400\ntoken = t\n\n"
        "[paths]\nposter_dir = posters\ndata_dir = data\n",
        encoding="utf-8",
    )
    return config_path


def test_main_help() -> None:
    """Test that --help works."""
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "posterkeep" in result.output


def test_version() -> None:
    """Test that --version works."""
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert re.search(r"\d+\.\d+\.\d+", result.output)
    assert __version__ in result.output


def test_commands_exist() -> None:
    """Test that every top-level command has help."""
    runner = CliRunner()
    commands = (
        "auto-import",
        "import",
        "orphans",
        "cleanup",
        "send",
        "export",
        "delete-orphans",
        "libraries",
        "ids",
        "config",
    )
    for command in commands:
        result = runner.invoke(main, [command, "--help"])
        assert result.exit_code == 0, command


def test_import_rejects_unknown_media_type() -> None:
    """Test the media type argument is validated."""
    runner = CliRunner()
    result = runner.invoke(main, ["import", "episode"])
    assert result.exit_code != 0


def test_config_path() -> None:
    """Test the config path command."""
    runner = CliRunner()
    result = runner.invoke(main, ["config", "path"])
    assert result.exit_code == 0
    assert ".posterkeep" in result.output


def test_config_init() -> None:
    """Test creating and refusing to overwrite a config file."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        target = Path(tmpdir) / "posterkeep.ini"
        result = runner.invoke(main, ["config", "init", "--path", str(target)])
        assert result.exit_code == 0
        assert target.exists()

        again = runner.invoke(main, ["config", "init", "--path", str(target)])
        assert again.exit_code == 1
        assert "already exists" in again.output


def test_ids_show_and_clear() -> None:
    """Test inspecting and clearing stored ids."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        ValidIdStore(root / "data").store_valid_ids(["1", "2"], MediaType.MOVIE, "1")

        try:
            shown = runner.invoke(main, ["--config", str(config_path), "ids", "show"])
            assert shown.exit_code == 0
            assert "movie" in shown.output

            cleared = runner.invoke(main, ["--config", str(config_path), "ids", "clear", "--yes"])
            assert cleared.exit_code == 0
            assert "Cleared 2" in cleared.output
            assert ValidIdStore(root / "data").get_all_valid_ids(MediaType.MOVIE) == set()
        finally:
            reset_config()


def test_orphans_requires_stored_ids() -> None:
    """Test orphan detection refuses to run without any stored ids."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        try:
            result = runner.invoke(main, ["--config", str(config_path), "orphans", "movie"])
            assert result.exit_code == 1
            assert "No stored movie ids" in result.output
        finally:
            reset_config()


def test_orphans_marks_stale_posters() -> None:
    """Test orphan detection against the stored ids."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        movies = root / "posters" / "movies"
        movies.mkdir(parents=True)
        (movies / "Keep [1] (A1700000000) [[Movies]] --Plex--.jpg").write_bytes(b"x")
        (movies / "Gone [2] (A1700000000) [[Movies]] --Plex--.jpg").write_bytes(b"x")
        ValidIdStore(root / "data").store_valid_ids(["1"], MediaType.MOVIE, "1")

        try:
            result = runner.invoke(main, ["--config", str(config_path), "orphans", "movie"])
            assert result.exit_code == 0
            assert (movies / "Gone [2] (A1700000000) [[Movies]] --Orphaned--.jpg").exists()
            assert (movies / "Keep [1] (A1700000000) [[Movies]] --Plex--.jpg").exists()
        finally:
            reset_config()


@patch("posterkeep.plex.PlexClient")
def test_libraries_table(mock_client_class: MagicMock) -> None:
    """Test the libraries command lists what Plex reports."""
    mock_client_class.return_value.get_libraries.return_value = [
        PlexLibrary(key="1", title="Movies", type="movie"),
        PlexLibrary(key="3", title="TV Shows", type="show"),
    ]
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = _write_config(Path(tmpdir))
        try:
            result = runner.invoke(main, ["--config", str(config_path), "libraries"])
        finally:
            reset_config()

    assert result.exit_code == 0
    assert "Movies" in result.output
    assert "TV Shows" in result.output


def test_auto_import_disabled() -> None:
    """Test the scheduled import exits cleanly when disabled."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = root / "posterkeep.ini"
        config_path.write_text("[auto_import]\nenabled = false\n", encoding="utf-8")
        try:
            result = runner.invoke(main, ["--config", str(config_path), "auto-import"])
        finally:
            reset_config()

    assert result.exit_code == 0
    assert "disabled" in result.output


def test_delete_orphans() -> None:
    """Test orphaned posters are deleted and everything else is kept."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        movies = root / "posters" / "movies"
        movies.mkdir(parents=True)
        (movies / "Keep [1] (A1700000000) [[Movies]] --Plex--.jpg").write_bytes(b"x")
        (movies / "Gone [2] (A1700000000) [[Movies]] --Orphaned--.jpg").write_bytes(b"x")
        shows = root / "posters" / "tv-shows"
        shows.mkdir(parents=True)
        (shows / "Lost [3] [[TV Shows]] --Orphaned--.jpg").write_bytes(b"x")

        try:
            result = runner.invoke(
                main, ["--config", str(config_path), "delete-orphans", "movie", "--yes"]
            )
        finally:
            reset_config()

        assert result.exit_code == 0
        assert "1 orphaned movie poster(s) deleted" in result.output
        assert [p.name for p in movies.iterdir()] == ["Keep [1] (A1700000000) [[Movies]] --Plex--.jpg"]
        assert (shows / "Lost [3] [[TV Shows]] --Orphaned--.jpg").exists()


def test_delete_orphans_requires_confirmation() -> None:
    """Test declining the prompt deletes nothing."""
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        movies = root / "posters" / "movies"
        movies.mkdir(parents=True)
        orphan = movies / "Gone [2] [[Movies]] --Orphaned--.jpg"
        orphan.write_bytes(b"x")

        try:
            result = runner.invoke(main, ["--config", str(config_path), "delete-orphans"], input="n\n")
        finally:
            reset_config()

        assert result.exit_code != 0
        assert orphan.exists()


@patch("posterkeep.plex.PlexClient")
def test_export(mock_client_class: MagicMock) -> None:
    """Test every managed poster of a media type is sent to Plex."""
    plex = mock_client_class.return_value
    plex.upload_poster.return_value = "metadata posters"
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        movies = root / "posters" / "movies"
        movies.mkdir(parents=True)
        (movies / "Keep [1] (A1700000000) [[Movies]] --Plex--.jpg").write_bytes(b"x")
        (movies / "Gone [2] (A1700000000) [[Movies]] --Orphaned--.jpg").write_bytes(b"x")

        try:
            result = runner.invoke(main, ["--config", str(config_path), "export", "movie"])
        finally:
            reset_config()

    assert result.exit_code == 0
    assert "1 sent, 0 failed" in result.output
    plex.upload_poster.assert_called_once_with("1", b"x", MediaType.MOVIE)
    plex.lock_poster.assert_called_once_with("1", MediaType.MOVIE)


@patch("posterkeep.plex.PlexClient")
def test_cleanup_reports_duplicate_files(mock_client_class: MagicMock) -> None:
    """Test the cleanup summary counts the extra files removed."""
    plex = mock_client_class.return_value
    plex.get_libraries.return_value = [PlexLibrary(key="1", title="Movies", type="movie")]
    plex.get_all_collections.return_value = []
    runner = CliRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        config_path = _write_config(root)
        collections = root / "posters" / "collections"
        collections.mkdir(parents=True)
        (collections / "Alien [555] (A1700000000) Collection (Movies) --Plex--.jpg").write_bytes(b"a")
        (collections / "Alien [555] Collection (Movies) --Plex--.jpg").write_bytes(b"b")

        try:
            result = runner.invoke(main, ["--config", str(config_path), "cleanup"])
        finally:
            reset_config()

    assert result.exit_code == 0
    assert "1 duplicate file(s), 1 deleted" in result.output
