"""Data models for Plex content."""

from __future__ import annotations

from pydantic import BaseModel, Field

from posterkeep.errors import MalformedItemError


class PlexLibrary(BaseModel):
    """A Plex library section."""

    key: str
    title: str
    type: str  # "movie", "show", "artist", "photo"

    @property
    def is_movie_library(self) -> bool:
        """Check if this is a movie library."""
        return self.type == "movie"

    @property
    def is_tv_library(self) -> bool:
        """Check if this is a TV show library."""
        return self.type == "show"


class PlexItem(BaseModel):
    """A movie, show, season or collection with a poster.

    Fields mirror the Plex metadata attributes; `rating_key`, `title`
    and `thumb` are needed to name and download a poster.
    """

    rating_key: str = ""
    title: str = ""
    thumb: str | None = None
    year: int | None = None
    added_at: int | None = None  # epoch seconds
    parent_title: str | None = None  # show title, seasons only
    index: int | None = None  # season number

    @property
    def display_title(self) -> str:
        """Title used in the poster filename."""
        if self.parent_title:
            return f"{self.parent_title} - {self.title}"
        return self.title

    def check_required(self) -> None:
        """Check the fields needed to name and fetch a poster.

        Raises:
            MalformedItemError: If the id, title or thumb is missing.
        """
        missing = [
            name
            for name, value in (
                ("ratingKey", self.rating_key),
                ("title", self.title),
                ("thumb", self.thumb),
            )
            if not value
        ]
        if missing:
            label = self.title or self.rating_key or "<unknown>"
            raise MalformedItemError(f"Item {label} is missing {', '.join(missing)}")


class ItemPage(BaseModel):
    """One page of a paginated Plex listing."""

    items: list[PlexItem] = Field(default_factory=list)
    offset: int = 0
    size: int = 0  # records consumed from the listing
    total_size: int = 0

    @property
    def next_offset(self) -> int:
        """Offset of the page after this one."""
        return self.offset + self.size

    @property
    def more_available(self) -> bool:
        """Whether Plex reports items past this page."""
        return self.size > 0 and self.next_offset < self.total_size
