"""Filename codec for poster files.

A poster's identity and provenance live entirely in its filename:

    Dune (2021) [12345] (A1700000000) [[Movies]] --Plex--.jpg
    Alien [555] (A1700000000) Collection (Movies) --Plex--.jpg

Fields, in order:
    title           sanitized display title
    (year)          movies only
    [id]            Plex rating key, the join key against remote items
    (A<epoch>)      addedAt timestamp; absent on legacy files
    [[library]]     library name, never present on collections
    Collection (TV) collections only: label plus library type marker
    --Plex--        status tag, or --Orphaned-- once the id stops validating

Every other module reads and writes these names through the helpers here.
Nothing in this module touches the filesystem.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

PLEX_TAG = "--Plex--"
ORPHANED_TAG = "--Orphaned--"
STATUS_TAGS = (PLEX_TAG, ORPHANED_TAG)

DEFAULT_EXTENSION = "jpg"
MAX_TITLE_LENGTH = 200
MAX_LIBRARY_BYTES = 64
# Common filesystem limit on a single path component
MAX_FILENAME_BYTES = 255


class MediaType(str, Enum):
    """Kinds of Plex items that get a poster file."""

    MOVIE = "movie"
    SHOW = "show"
    SEASON = "season"
    COLLECTION = "collection"


# Library type -> marker embedded in collection filenames
TYPE_MARKERS = {
    "movie": "(Movies)",
    "show": "(TV)",
}

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")
# A single-bracket token; the lookarounds keep [[Library]] from matching
_ID_PATTERN = re.compile(r"(?<!\[)\[([A-Za-z0-9]+)\](?!\])")
_TIMESTAMP_PATTERN = re.compile(r"\(A(\d{8,12})\)")
_LIBRARY_PATTERN = re.compile(r"\[\[(.+?)\]\]")
_TRAILING_YEAR_PATTERN = re.compile(r"\((\d{4})\)$")


def sanitize_title(title: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Make a title safe to embed in a filename.

    Only characters that are invalid on common filesystems are removed;
    other punctuation and all unicode letters, marks and numbers are kept.

    Args:
        title: Raw title from Plex.
        max_length: Maximum length of the result.

    Returns:
        Sanitized title with whitespace collapsed and trimmed.
    """
    cleaned = _UNSAFE_CHARS.sub("", title)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:max_length].rstrip()


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Shorten text to at most max_bytes of UTF-8 without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[: max(max_bytes, 0)].decode("utf-8", errors="ignore").rstrip()


def format_timestamp(added_at: int) -> str:
    """Format an addedAt epoch as the (A<epoch>) filename token."""
    return f"(A{int(added_at)})"


def collection_type_marker(library_kind: str | None) -> str | None:
    """Get the collection type marker for a library type, if known."""
    if library_kind is None:
        return None
    return TYPE_MARKERS.get(library_kind)


@dataclass(frozen=True)
class PosterName:
    """Structured form of a poster filename."""

    title: str
    item_id: str
    media_type: MediaType
    library_kind: str | None = None  # "movie" or "show"
    library_name: str | None = None
    year: int | None = None
    added_at: int | None = None
    status: str = PLEX_TAG
    extension: str = DEFAULT_EXTENSION

    @property
    def filename(self) -> str:
        """Encode these fields as a filename.

        The title is shortened when needed so the whole name stays within
        MAX_FILENAME_BYTES of UTF-8.
        """
        title = sanitize_title(self.title)
        parts = []

        if self.year and self.media_type == MediaType.MOVIE:
            parts.append(f"({self.year})")

        parts.append(f"[{self.item_id}]")

        if self.added_at:
            parts.append(format_timestamp(self.added_at))

        if self.media_type == MediaType.COLLECTION:
            if "collection" not in title.lower():
                parts.append("Collection")
            marker = collection_type_marker(self.library_kind)
            if marker:
                parts.append(marker)
        elif self.library_name:
            library = truncate_utf8(sanitize_title(self.library_name), MAX_LIBRARY_BYTES)
            if library:
                parts.append(f"[[{library}]]")

        parts.append(self.status)
        rest = f" {' '.join(parts)}.{self.extension}"
        title = truncate_utf8(title, MAX_FILENAME_BYTES - len(rest.encode("utf-8")))
        return f"{title}{rest}".lstrip()


def parse_filename(filename: str, media_type: MediaType) -> PosterName | None:
    """Decode a poster filename back into its fields.

    Decoding is best-effort: legacy names missing optional fields decode
    with those fields unset. Names without a status tag or an id token
    are not poster files and decode to None.

    Args:
        filename: Bare filename (no directory).
        media_type: Media type of the directory the file lives in.

    Returns:
        Decoded fields, or None if the name is not a poster filename.
    """
    stem, dot, extension = filename.rpartition(".")
    if not dot:
        return None

    status = next((tag for tag in STATUS_TAGS if stem.endswith(tag)), None)
    if status is None:
        return None
    body = stem[: -len(status)].rstrip()

    id_match = _ID_PATTERN.search(body)
    if not id_match:
        return None

    title = body[: id_match.start()].rstrip()
    tail = body[id_match.end() :]

    year = None
    if media_type == MediaType.MOVIE:
        year_match = _TRAILING_YEAR_PATTERN.search(title)
        if year_match:
            year = int(year_match.group(1))
            title = title[: year_match.start()].rstrip()

    library_kind = None
    library_name = None
    if media_type == MediaType.COLLECTION:
        library_kind = next(
            (kind for kind, marker in TYPE_MARKERS.items() if marker in tail), None
        )
    else:
        library_match = _LIBRARY_PATTERN.search(tail)
        if library_match:
            library_name = library_match.group(1)

    return PosterName(
        title=title,
        item_id=id_match.group(1),
        media_type=media_type,
        library_kind=library_kind,
        library_name=library_name,
        year=year,
        added_at=get_timestamp(tail),
        status=status,
        extension=extension,
    )


def extract_id(filename: str) -> str | None:
    """Get the first [id] token in a filename, or None if there is none."""
    match = _ID_PATTERN.search(filename)
    return match.group(1) if match else None


def has_timestamp(filename: str) -> bool:
    """Check whether a filename carries an (A<epoch>) token."""
    return _TIMESTAMP_PATTERN.search(filename) is not None


def get_timestamp(filename: str) -> int | None:
    """Get the addedAt epoch embedded in a filename."""
    match = _TIMESTAMP_PATTERN.search(filename)
    return int(match.group(1)) if match else None


def has_status_tag(filename: str, tag: str) -> bool:
    """Check whether a filename contains the given status tag."""
    return tag in filename


def is_managed(filename: str) -> bool:
    """Check whether a file is a current, Plex-managed poster."""
    return has_status_tag(filename, PLEX_TAG)


def is_orphaned(filename: str) -> bool:
    """Check whether a file has been tagged orphaned."""
    return has_status_tag(filename, ORPHANED_TAG)


def has_type_marker(filename: str, library_kind: str | None) -> bool:
    """Check whether a collection filename carries the marker for a library type."""
    marker = collection_type_marker(library_kind)
    return marker is not None and marker in filename


def has_library_name(filename: str, library_name: str) -> bool:
    """Check whether a filename carries the [[library]] token for a library."""
    return f"[[{truncate_utf8(sanitize_title(library_name), MAX_LIBRARY_BYTES)}]]" in filename


def has_show_title(filename: str, show_title: str) -> bool:
    """Check whether a season filename belongs to a show.

    Season posters are named "<show> - <season>" after sanitizing, so the
    sanitized show title is matched as that prefix.
    """
    title = sanitize_title(show_title)
    return bool(title) and filename.startswith(f"{title} - ")


def insert_or_replace_timestamp(filename: str, added_at: int) -> str:
    """Set the addedAt token of a filename.

    An existing token is replaced in place. Otherwise the token is inserted
    after the [id] token, or before the status tag, or before the extension.

    Args:
        filename: Filename to update.
        added_at: addedAt epoch seconds.

    Returns:
        Filename carrying exactly one timestamp token.
    """
    stamp = format_timestamp(added_at)

    if _TIMESTAMP_PATTERN.search(filename):
        return _TIMESTAMP_PATTERN.sub(stamp, filename, count=1)

    id_match = _ID_PATTERN.search(filename)
    if id_match:
        end = id_match.end()
        return f"{filename[:end]} {stamp}{filename[end:]}"

    for tag in STATUS_TAGS:
        index = filename.rfind(tag)
        if index != -1:
            return f"{filename[:index].rstrip()} {stamp} {filename[index:]}".lstrip()

    stem, dot, extension = filename.rpartition(".")
    if not dot:
        return f"{filename} {stamp}"
    return f"{stem} {stamp}.{extension}"


def retag_status(filename: str, from_tag: str, to_tag: str) -> str:
    """Swap one status tag for another.

    Returns the filename unchanged if it does not contain `from_tag`;
    callers check the current tag first.
    """
    if from_tag not in filename:
        return filename
    head, _, tail = filename.rpartition(from_tag)
    return f"{head}{to_tag}{tail}"
