"""Tests for the Plex client."""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from plexapi.exceptions import Unauthorized

from posterkeep.errors import MalformedItemError
from posterkeep.naming import MediaType
from posterkeep.plex import (
    ItemPage,
    PlexAuthError,
    PlexClient,
    PlexConnectionError,
    PlexError,
    PlexItem,
    PlexLibrary,
    PlexNotFoundError,
)


def _container(**fields) -> httpx.Response:
    return httpx.Response(200, json={"MediaContainer": fields})


def _client(handler) -> PlexClient:
    return PlexClient(
        url="http://plex.local:32400",
        token="secret",
        transport=httpx.MockTransport(handler),
    )


class TestPlexModels:
    """Tests for Plex data models."""

    def test_library_is_movie(self) -> None:
        """Test movie library detection."""
        lib = PlexLibrary(key="1", title="Movies", type="movie")
        assert lib.is_movie_library is True
        assert lib.is_tv_library is False

    def test_library_is_tv(self) -> None:
        """Test TV library detection."""
        lib = PlexLibrary(key="2", title="TV Shows", type="show")
        assert lib.is_movie_library is False
        assert lib.is_tv_library is True

    def test_season_display_title(self) -> None:
        """Test seasons are titled after their show."""
        season = PlexItem(rating_key="5", title="Season 2", parent_title="Lost")
        assert season.display_title == "Lost - Season 2"
        assert PlexItem(rating_key="6", title="Dune").display_title == "Dune"

    def test_check_required(self) -> None:
        """Test items missing naming fields are rejected."""
        PlexItem(rating_key="1", title="Dune", thumb="/t").check_required()
        with pytest.raises(MalformedItemError, match="thumb"):
            PlexItem(rating_key="1", title="Dune").check_required()
        with pytest.raises(MalformedItemError, match="ratingKey"):
            PlexItem(title="Dune", thumb="/t").check_required()

    def test_page_more_available(self) -> None:
        """Test paging arithmetic uses the records consumed, not the items kept."""
        page = ItemPage(items=[], offset=0, size=25, total_size=60)
        assert page.more_available
        assert page.next_offset == 25

        last = ItemPage(items=[], offset=50, size=10, total_size=60)
        assert not last.more_available

        empty = ItemPage(items=[], offset=0, size=0, total_size=60)
        assert not empty.more_available


class TestPlexClient:
    """Tests for Plex API client setup and plexapi calls."""

    def test_init_no_url(self) -> None:
        """Test initialization without URL raises error."""
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(PlexAuthError, match="URL not provided"):
                PlexClient()

    def test_init_no_token(self) -> None:
        """Test initialization without token raises error."""
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(PlexAuthError, match="token not provided"):
                PlexClient(url="http://localhost:32400")

    def test_init_from_env(self) -> None:
        """Test URL and token fall back to environment variables."""
        with patch.dict("os.environ", {"PLEX_URL": "http://env:32400", "PLEX_TOKEN": "env_token"}):
            client = PlexClient()
            assert client.url == "http://env:32400"
            assert client.token == "env_token"

    def test_url_normalization(self) -> None:
        """Test URL normalization."""
        client1 = PlexClient(url="localhost:32400", token="test")
        assert client1.url == "http://localhost:32400"

        client2 = PlexClient(url="http://localhost:32400/", token="test")
        assert client2.url == "http://localhost:32400"

    @patch("posterkeep.plex.client.PlexServer")
    def test_connect_success(self, mock_server_class: MagicMock) -> None:
        """Test successful connection."""
        mock_server = MagicMock()
        mock_server.friendlyName = "Test Server"
        mock_server_class.return_value = mock_server

        client = PlexClient(url="http://localhost:32400", token="test")
        client.connect()

        assert client._server is mock_server
        assert client.server_name == "Test Server"
        mock_server_class.assert_called_once()

    @patch("posterkeep.plex.client.PlexServer")
    def test_connect_unauthorized(self, mock_server_class: MagicMock) -> None:
        """Test a rejected token maps to PlexAuthError."""
        mock_server_class.side_effect = Unauthorized("401")

        client = PlexClient(url="http://localhost:32400", token="bad")
        with pytest.raises(PlexAuthError):
            client.connect()

    @patch("posterkeep.plex.client.PlexServer")
    def test_connect_failure(self, mock_server_class: MagicMock) -> None:
        """Test other connection failures map to PlexConnectionError."""
        mock_server_class.side_effect = OSError("unreachable")

        client = PlexClient(url="http://localhost:32400", token="test")
        with pytest.raises(PlexConnectionError):
            client.connect()

    @patch("posterkeep.plex.client.PlexServer")
    def test_get_libraries(self, mock_server_class: MagicMock) -> None:
        """Test only movie and show sections are returned."""
        sections = []
        for key, title, kind in ((1, "Movies", "movie"), (2, "Music", "artist"), (3, "TV", "show")):
            section = MagicMock()
            section.key = key
            section.title = title
            section.type = kind
            sections.append(section)
        mock_server = MagicMock()
        mock_server.library.sections.return_value = sections
        mock_server_class.return_value = mock_server

        client = PlexClient(url="http://localhost:32400", token="test")
        libraries = client.get_libraries()

        assert [(lib.key, lib.title) for lib in libraries] == [("1", "Movies"), ("3", "TV")]
        assert [lib.title for lib in client.get_movie_libraries()] == ["Movies"]
        assert [lib.title for lib in client.get_tv_libraries()] == ["TV"]


class TestPlexHttp:
    """Tests for the HTTP listings, downloads and uploads."""

    def test_items_page(self) -> None:
        """Test paging headers are sent and thumb-less items are dropped."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["start"] = request.headers["X-Plex-Container-Start"]
            seen["size"] = request.headers["X-Plex-Container-Size"]
            seen["token"] = request.headers["X-Plex-Token"]
            return _container(
                totalSize=5,
                Metadata=[
                    {"ratingKey": 10, "title": "Dune", "thumb": "/t/10", "year": 2021, "addedAt": 1700000000},
                    {"ratingKey": 11, "title": "No Poster"},
                ],
            )

        page = _client(handler).get_items_page("1", start=2, size=2)

        assert seen == {"path": "/library/sections/1/all", "start": "2", "size": "2", "token": "secret"}
        assert [item.rating_key for item in page.items] == ["10"]
        assert page.items[0].added_at == 1700000000
        assert page.size == 2
        assert page.more_available is True

    def test_items_page_keeps_thumbless_when_asked(self) -> None:
        """Test require_thumb=False keeps every record."""

        def handler(request: httpx.Request) -> httpx.Response:
            return _container(totalSize=1, Metadata=[{"ratingKey": 11, "title": "Show"}])

        page = _client(handler).get_items_page("3", require_thumb=False)
        assert [item.title for item in page.items] == ["Show"]

    def test_get_all_collections_follows_pages(self) -> None:
        """Test that every page of a listing is read."""

        def handler(request: httpx.Request) -> httpx.Response:
            start = int(request.headers["X-Plex-Container-Start"])
            entries = [
                {"ratingKey": key, "title": f"C{key}", "thumb": f"/t/{key}"}
                for key in range(start, min(start + 2, 5))
            ]
            return _container(totalSize=5, Metadata=entries)

        items = _client(handler).get_all_collections("1", page_size=2)
        assert [item.rating_key for item in items] == ["0", "1", "2", "3", "4"]

    def test_get_seasons(self) -> None:
        """Test the all-episodes entry is skipped and the show title filled in."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/library/metadata/50/children"
            return _container(
                parentTitle="Lost",
                Metadata=[
                    {"ratingKey": 49, "title": "All episodes", "thumb": "/t/49"},
                    {"ratingKey": 51, "title": "Season 1", "index": 1, "thumb": "/t/51"},
                    {"ratingKey": 52, "title": "Season 2", "index": 2},
                ],
            )

        seasons = _client(handler).get_seasons("50")
        assert [season.rating_key for season in seasons] == ["51"]
        assert seasons[0].display_title == "Lost - Season 1"

    def test_status_errors(self) -> None:
        """Test non-2xx responses map to the Plex error types."""
        codes = iter([401, 404, 500])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(codes), text="boom")

        client = _client(handler)
        with pytest.raises(PlexAuthError):
            client.get_items_page("1")
        with pytest.raises(PlexNotFoundError):
            client.get_items_page("1")
        with pytest.raises(PlexError, match="500"):
            client.get_items_page("1")

    def test_malformed_payload(self) -> None:
        """Test a response without MediaContainer is an error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(PlexError, match="MediaContainer"):
            _client(handler).get_items_page("1")

    def test_transport_error(self) -> None:
        """Test connection failures map to PlexConnectionError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PlexConnectionError):
            _client(handler).get_items_page("1")

    def test_fetch_image(self) -> None:
        """Test poster bytes are returned and empty bodies rejected."""
        bodies = iter([b"\xff\xd8jpeg", b""])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=next(bodies))

        client = _client(handler)
        assert client.fetch_image("/library/metadata/1/thumb/2") == b"\xff\xd8jpeg"
        with pytest.raises(PlexError, match="Empty image"):
            client.fetch_image("/library/metadata/1/thumb/2")

    def test_upload_metadata_poster(self) -> None:
        """Test non-collection uploads use the metadata endpoint."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, request.content))
            return httpx.Response(200)

        method = _client(handler).upload_poster("10", b"jpeg", MediaType.MOVIE)

        assert method == "metadata posters"
        assert calls == [("POST", "/library/metadata/10/posters", b"jpeg")]

    def test_collection_upload_falls_back(self) -> None:
        """Test collection uploads try the next strategy after a failure."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, request.url.params.get("X-Plex-Token")))
            if request.url.path.endswith("/posters"):
                return httpx.Response(404)
            return httpx.Response(200)

        method = _client(handler).upload_poster("999", b"jpeg", MediaType.COLLECTION)

        assert method == "collection poster"
        assert calls == [
            ("POST", "/library/collections/999/posters", None),
            ("PUT", "/library/collections/999/poster", "secret"),
        ]

    def test_collection_upload_all_fail(self) -> None:
        """Test the last error is raised when every strategy fails."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(500, text="nope")

        with pytest.raises(PlexError, match="All upload methods failed"):
            _client(handler).upload_poster("999", b"jpeg", MediaType.COLLECTION)
        assert len(calls) == 4

    def test_lock_poster(self) -> None:
        """Test locking edits the item through its library section."""
        edits = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return _container(Metadata=[{"ratingKey": 10, "librarySectionID": 4}])
            edits.append((request.url.path, dict(request.url.params)))
            return httpx.Response(200)

        _client(handler).lock_poster("10", MediaType.MOVIE)

        assert edits == [("/library/sections/4/all", {"type": "1", "id": "10", "thumb.locked": "1"})]

    def test_remove_label(self) -> None:
        """Test label removal uses the tag-removal parameter."""
        edits = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return _container(Metadata=[{"librarySectionID": 2}])
            edits.append(dict(request.url.params))
            return httpx.Response(200)

        _client(handler).remove_label("999", MediaType.COLLECTION, "Overlay")

        assert edits == [{"type": "18", "id": "999", "label[].tag.tag-": "Overlay"}]
