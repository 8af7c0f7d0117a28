"""Error kinds raised across posterkeep.

Errors that can be contained to a single file, item or library are caught
by the component that owns that unit of work and reported through its
result object. Only the CLI turns an uncaught error into a process exit.
"""


class PosterkeepError(Exception):
    """Base exception for all posterkeep errors."""

    pass


class ConfigError(PosterkeepError):
    """Missing or invalid configuration (credentials, paths, settings)."""

    pass


class RemoteApiError(PosterkeepError):
    """Non-2xx response, transport failure or malformed payload from Plex."""

    pass


class FilesystemError(PosterkeepError):
    """A rename, write or mkdir on the poster directory failed."""

    pass


class MalformedItemError(PosterkeepError):
    """A remote record is missing a field required to name its poster."""

    pass
