"""Plex Media Server client.

Server identity and the library section listing come from plexapi. The
paginated container listings, poster downloads, uploads and locks go over
plain HTTP with httpx so that paging headers, timeouts and the collection
upload fallbacks stay explicit.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx
import requests
from plexapi.exceptions import BadRequest, NotFound, Unauthorized
from plexapi.server import PlexServer

from posterkeep._version import __version__
from posterkeep.errors import RemoteApiError
from posterkeep.naming import MediaType
from posterkeep.plex.models import ItemPage, PlexItem, PlexLibrary

logger = logging.getLogger(__name__)

PRODUCT_NAME = "posterkeep"
CLIENT_IDENTIFIER = "posterkeep-poster-sync"
DEFAULT_PAGE_SIZE = 50

# Metadata type codes accepted by the section edit endpoint
PLEX_TYPE_CODES = {
    MediaType.MOVIE: 1,
    MediaType.SHOW: 2,
    MediaType.SEASON: 3,
    MediaType.COLLECTION: 18,
}


class PlexError(RemoteApiError):
    """Base exception for Plex errors."""

    pass


class PlexAuthError(PlexError):
    """Authentication error."""

    pass


class PlexConnectionError(PlexError):
    """Connection error."""

    pass


class PlexNotFoundError(PlexError):
    """Resource not found."""

    pass


@dataclass(frozen=True)
class UploadStrategy:
    """One way of writing a poster to a Plex item."""

    name: str
    method: str
    path: str  # formatted with the rating key
    multipart: bool = False
    token_in_query: bool = False


METADATA_UPLOAD = UploadStrategy("metadata posters", "POST", "/library/metadata/{key}/posters")

# Collections do not accept uploads consistently across server versions;
# these are tried in order until one returns 2xx.
COLLECTION_UPLOAD_STRATEGIES: tuple[UploadStrategy, ...] = (
    UploadStrategy("collection posters", "POST", "/library/collections/{key}/posters"),
    UploadStrategy("collection poster", "PUT", "/library/collections/{key}/poster", token_in_query=True),
    UploadStrategy("collection arts", "POST", "/library/collections/{key}/arts"),
    UploadStrategy(
        "collection posters multipart", "POST", "/library/collections/{key}/posters", multipart=True
    ),
)


class PlexClient:
    """Client for Plex Media Server."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        connect_timeout: float = 10,
        request_timeout: float = 60,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the Plex client.

        Args:
            url: Plex server URL. If not provided, reads from PLEX_URL env var.
            token: Plex auth token. If not provided, reads from PLEX_TOKEN env var.
            connect_timeout: Seconds allowed to establish a connection.
            request_timeout: Seconds allowed for a whole request.
            transport: Optional httpx transport (used by tests).
        """
        self.url = url or os.environ.get("PLEX_URL")
        self.token = token or os.environ.get("PLEX_TOKEN")

        if not self.url:
            raise PlexAuthError(
                "Plex server URL not provided. Set PLEX_URL environment variable "
                "or pass url parameter."
            )

        if not self.token:
            raise PlexAuthError(
                "Plex token not provided. Set PLEX_TOKEN environment variable "
                "or pass token parameter."
            )

        self.url = self._normalize_url(self.url)

        self._request_timeout = request_timeout
        self._server: PlexServer | None = None
        self._http = httpx.Client(
            base_url=self.url,
            timeout=httpx.Timeout(request_timeout, connect=connect_timeout),
            headers={
                "Accept": "application/json",
                "X-Plex-Token": self.token,
                "X-Plex-Client-Identifier": CLIENT_IDENTIFIER,
                "X-Plex-Product": PRODUCT_NAME,
                "X-Plex-Version": __version__,
            },
            transport=transport,
        )

    def _normalize_url(self, url: str) -> str:
        """Normalize the Plex server URL."""
        # urlparse treats "localhost:32400" as scheme="localhost", path="32400"
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            url = f"http://{url}"
        return url.rstrip("/")

    def connect(self) -> None:
        """Connect to the Plex server.

        Raises:
            PlexAuthError: If authentication fails.
            PlexConnectionError: If connection fails.
        """
        try:
            self._server = PlexServer(self.url, self.token, timeout=self._request_timeout)
        except Unauthorized as e:
            raise PlexAuthError(f"Invalid Plex token: {e}") from e
        except Exception as e:
            raise PlexConnectionError(f"Failed to connect to Plex server: {e}") from e

    @property
    def server(self) -> PlexServer:
        """Get the connected server, connecting if necessary."""
        if self._server is None:
            self.connect()
        return self._server  # type: ignore[return-value]

    @property
    def server_name(self) -> str:
        """Get the server's friendly name."""
        return self.server.friendlyName

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()

    def __enter__(self) -> PlexClient:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def test_connection(self) -> bool:
        """Test the connection to the Plex server.

        Returns:
            True if connection is successful.

        Raises:
            PlexAuthError: If authentication fails.
            PlexConnectionError: If connection fails.
        """
        _ = self.server  # Will raise if connection fails
        return True

    def get_libraries(self) -> list[PlexLibrary]:
        """Get the movie and TV show library sections.

        Returns:
            Movie and show libraries, in server order.

        Raises:
            PlexError: If the section listing fails.
        """
        try:
            sections = self.server.library.sections()
        except Unauthorized as e:
            raise PlexAuthError(f"Invalid Plex token: {e}") from e
        except (BadRequest, NotFound) as e:
            raise PlexError(f"Failed to list libraries: {e}") from e
        except requests.RequestException as e:
            raise PlexConnectionError(f"Failed to list libraries: {e}") from e

        libraries = [
            PlexLibrary(key=str(section.key), title=section.title, type=section.type)
            for section in sections
        ]
        return [lib for lib in libraries if lib.is_movie_library or lib.is_tv_library]

    def get_movie_libraries(self) -> list[PlexLibrary]:
        """Get all movie libraries."""
        return [lib for lib in self.get_libraries() if lib.is_movie_library]

    def get_tv_libraries(self) -> list[PlexLibrary]:
        """Get all TV show libraries."""
        return [lib for lib in self.get_libraries() if lib.is_tv_library]

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to Plex errors."""
        try:
            return self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise PlexConnectionError(f"Timed out calling {path}: {e}") from e
        except httpx.RequestError as e:
            raise PlexConnectionError(f"Failed to call {path}: {e}") from e

    def _check_status(self, response: httpx.Response) -> None:
        """Raise the matching Plex error for a non-2xx response."""
        if response.is_success:
            return

        if response.status_code == 401:
            raise PlexAuthError("Authentication failed")

        if response.status_code == 404:
            raise PlexNotFoundError(f"Resource not found: {response.request.url.path}")

        message = response.text.strip() or "Unknown error"
        raise PlexError(f"Plex API error ({response.status_code}): {message[:200]}")

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Handle API response and return its MediaContainer."""
        self._check_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise PlexError(f"Malformed JSON from {response.request.url.path}") from e

        container = data.get("MediaContainer") if isinstance(data, dict) else None
        if not isinstance(container, dict):
            raise PlexError(f"Missing MediaContainer in {response.request.url.path}")
        return container

    def _get_container(
        self, path: str, start: int | None = None, size: int | None = None
    ) -> dict[str, Any]:
        """GET a container endpoint, optionally one page of it."""
        headers = {}
        if start is not None and size is not None:
            headers["X-Plex-Container-Start"] = str(start)
            headers["X-Plex-Container-Size"] = str(size)
        return self._handle_response(self._request("GET", path, headers=headers))

    def _parse_item(self, entry: dict[str, Any]) -> PlexItem:
        """Convert a Metadata entry into a PlexItem."""
        return PlexItem(
            rating_key=str(entry.get("ratingKey", "")),
            title=str(entry.get("title", "")),
            thumb=entry.get("thumb") or None,
            year=entry.get("year"),
            added_at=entry.get("addedAt"),
            parent_title=entry.get("parentTitle"),
            index=entry.get("index"),
        )

    def _get_page(
        self, path: str, start: int, size: int, require_thumb: bool = True
    ) -> ItemPage:
        """Fetch one page of a Metadata listing, dropping entries without a poster."""
        container = self._get_container(path, start=start, size=size)
        entries = container.get("Metadata") or []
        total_size = int(container.get("totalSize", container.get("size", len(entries))))

        items = []
        for entry in entries:
            if require_thumb and not entry.get("thumb"):
                logger.debug("Skipping %s: no poster", entry.get("title", entry.get("ratingKey")))
                continue
            items.append(self._parse_item(entry))

        return ItemPage(items=items, offset=start, size=len(entries), total_size=total_size)

    def get_items_page(
        self,
        library_key: str,
        start: int = 0,
        size: int = DEFAULT_PAGE_SIZE,
        require_thumb: bool = True,
    ) -> ItemPage:
        """Get one page of the movies or shows in a library.

        Args:
            library_key: Library section key.
            start: Offset of the first item.
            size: Maximum number of items.
            require_thumb: Drop items that have no poster.
        """
        return self._get_page(
            f"/library/sections/{library_key}/all", start, size, require_thumb=require_thumb
        )

    def get_collections_page(
        self, library_key: str, start: int = 0, size: int = DEFAULT_PAGE_SIZE
    ) -> ItemPage:
        """Get one page of the collections in a library."""
        return self._get_page(f"/library/sections/{library_key}/collections", start, size)

    def get_seasons(self, show_key: str) -> list[PlexItem]:
        """Get the seasons of a show.

        The "All episodes" pseudo-season has no index and is left out, as are
        seasons without a poster.

        Args:
            show_key: Rating key of the show.

        Returns:
            Seasons with `parent_title` set to the show title.
        """
        container = self._get_container(f"/library/metadata/{show_key}/children")
        show_title = container.get("parentTitle") or container.get("title2")
        seasons = []
        for entry in container.get("Metadata") or []:
            if entry.get("index") is None or not entry.get("thumb"):
                continue
            season = self._parse_item(entry)
            if not season.parent_title and show_title:
                season = season.model_copy(update={"parent_title": show_title})
            seasons.append(season)
        return seasons

    def get_all_items(self, library_key: str, page_size: int = DEFAULT_PAGE_SIZE) -> list[PlexItem]:
        """Get every movie or show in a library, following pagination."""
        return self._collect(self.get_items_page, library_key, page_size)

    def get_all_collections(
        self, library_key: str, page_size: int = DEFAULT_PAGE_SIZE
    ) -> list[PlexItem]:
        """Get every collection in a library, following pagination."""
        return self._collect(self.get_collections_page, library_key, page_size)

    def _collect(self, fetch: Any, library_key: str, page_size: int) -> list[PlexItem]:
        items: list[PlexItem] = []
        start = 0
        while True:
            page = fetch(library_key, start, page_size)
            items.extend(page.items)
            if not page.more_available:
                return items
            start = page.next_offset

    def fetch_image(self, thumb: str) -> bytes:
        """Download poster bytes by their thumb path.

        Raises:
            PlexError: If the download fails or returns no data.
        """
        response = self._request("GET", thumb, headers={"Accept": "image/*"})
        self._check_status(response)
        if not response.content:
            raise PlexError(f"Empty image returned for {thumb}")
        return response.content

    def get_metadata(self, rating_key: str) -> dict[str, Any]:
        """Get the metadata entry for one item."""
        container = self._get_container(f"/library/metadata/{rating_key}")
        entries = container.get("Metadata") or []
        if not entries:
            raise PlexNotFoundError(f"No metadata for item {rating_key}")
        return entries[0]

    def get_library_section_id(self, rating_key: str) -> str:
        """Get the library section an item belongs to."""
        section_id = self.get_metadata(rating_key).get("librarySectionID")
        if section_id is None:
            raise PlexError(f"Item {rating_key} has no library section")
        return str(section_id)

    def _send_upload(self, strategy: UploadStrategy, rating_key: str, data: bytes) -> httpx.Response:
        path = strategy.path.format(key=rating_key)
        params = {"X-Plex-Token": self.token} if strategy.token_in_query else None
        if strategy.multipart:
            return self._request(
                strategy.method,
                path,
                params=params,
                files={"file": ("poster.jpg", data, "image/jpeg")},
            )
        return self._request(
            strategy.method,
            path,
            params=params,
            content=data,
            headers={"Content-Type": "image/jpeg"},
        )

    def upload_poster(self, rating_key: str, data: bytes, media_type: MediaType) -> str:
        """Upload poster bytes to an item.

        Collections try each strategy in `COLLECTION_UPLOAD_STRATEGIES` in
        order and stop at the first 2xx response.

        Args:
            rating_key: Item to update.
            data: JPEG bytes.
            media_type: Media type of the item.

        Returns:
            Name of the strategy that succeeded.

        Raises:
            PlexError: With the last failure if no strategy succeeded.
        """
        if media_type == MediaType.COLLECTION:
            strategies = COLLECTION_UPLOAD_STRATEGIES
        else:
            strategies = (METADATA_UPLOAD,)

        last_error: PlexError | None = None
        for strategy in strategies:
            try:
                response = self._send_upload(strategy, rating_key, data)
                self._check_status(response)
            except PlexError as e:
                logger.debug("Upload via %s failed for %s: %s", strategy.name, rating_key, e)
                last_error = e
                continue
            logger.debug("Uploaded poster for %s via %s", rating_key, strategy.name)
            return strategy.name

        raise PlexError(f"All upload methods failed for item {rating_key}: {last_error}")

    def refresh_metadata(self, rating_key: str) -> None:
        """Ask Plex to refresh an item's metadata."""
        self._check_status(self._request("PUT", f"/library/metadata/{rating_key}/refresh"))

    def _edit_section_item(
        self, rating_key: str, media_type: MediaType, params: dict[str, Any]
    ) -> None:
        section_id = self.get_library_section_id(rating_key)
        query = {"type": PLEX_TYPE_CODES[media_type], "id": rating_key, **params}
        self._check_status(self._request("PUT", f"/library/sections/{section_id}/all", params=query))

    def lock_poster(self, rating_key: str, media_type: MediaType) -> None:
        """Lock an item's poster so Plex agents do not replace it."""
        self._edit_section_item(rating_key, media_type, {"thumb.locked": 1})

    def remove_label(self, rating_key: str, media_type: MediaType, label: str) -> None:
        """Remove a label from an item."""
        self._edit_section_item(rating_key, media_type, {"label[].tag.tag-": label})
