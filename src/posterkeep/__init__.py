"""posterkeep - keep a local poster collection in sync with Plex."""

from posterkeep._version import __version__

__all__ = ["__version__"]
