"""Plex Media Server integration."""

from posterkeep.plex.client import (
    COLLECTION_UPLOAD_STRATEGIES,
    PlexAuthError,
    PlexClient,
    PlexConnectionError,
    PlexError,
    PlexNotFoundError,
    UploadStrategy,
)
from posterkeep.plex.models import ItemPage, PlexItem, PlexLibrary

__all__ = [
    "PlexClient",
    "PlexError",
    "PlexAuthError",
    "PlexConnectionError",
    "PlexNotFoundError",
    "UploadStrategy",
    "COLLECTION_UPLOAD_STRATEGIES",
    "PlexLibrary",
    "PlexItem",
    "ItemPage",
]
