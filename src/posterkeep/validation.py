"""Configuration validation for posterkeep."""

from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console

from posterkeep.config import AppConfig, get_config, validate_config
from posterkeep.errors import ConfigError

console = Console()


@dataclass
class ConnectionTestResult:
    """Result of testing the connection to a Plex server."""

    plex_ok: bool = False
    plex_server_name: str = ""
    plex_error: str | None = None
    movie_libraries: list[str] = field(default_factory=list)
    tv_libraries: list[str] = field(default_factory=list)


def check_plex_server(
    url: str | None,
    token: str | None,
    connect_timeout: float = 10,
    request_timeout: float = 60,
) -> ConnectionTestResult:
    """Connect to a Plex server and list its libraries.

    Args:
        url: Plex server URL (falls back to PLEX_URL).
        token: Plex auth token (falls back to PLEX_TOKEN).
        connect_timeout: Seconds allowed to establish a connection.
        request_timeout: Seconds allowed for a whole request.

    Returns:
        ConnectionTestResult with the server name or the error.
    """
    from posterkeep.plex import PlexClient, PlexError

    result = ConnectionTestResult()
    try:
        with PlexClient(
            url=url,
            token=token,
            connect_timeout=connect_timeout,
            request_timeout=request_timeout,
        ) as plex:
            result.plex_server_name = plex.server_name or "Plex Server"
            libraries = plex.get_libraries()
    except PlexError as e:
        result.plex_error = str(e)
        return result

    result.plex_ok = True
    result.movie_libraries = [lib.title for lib in libraries if lib.is_movie_library]
    result.tv_libraries = [lib.title for lib in libraries if lib.is_tv_library]
    return result


def validate_setup(config: AppConfig | None = None) -> bool:
    """Validate the configuration with Rich console output.

    Checks that the required settings are present, then that the Plex
    server accepts the connection.

    Returns:
        True if the configuration is complete and Plex is reachable.
    """
    cfg = config or get_config()

    console.print("[bold]Validating Configuration[/bold]")
    console.print()

    try:
        validate_config(cfg)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        return False

    console.print("Plex Server... ", end="")
    result = check_plex_server(
        cfg.plex.url,
        cfg.plex.token,
        connect_timeout=cfg.plex.connect_timeout,
        request_timeout=cfg.plex.request_timeout,
    )
    if not result.plex_ok:
        console.print(f"[red]Failed[/red] - {result.plex_error}")
        return False

    console.print(f"[green]OK[/green] ({result.plex_server_name})")
    if result.movie_libraries:
        console.print(f"  Movie libraries: {', '.join(result.movie_libraries)}")
    if result.tv_libraries:
        console.print(f"  TV libraries: {', '.join(result.tv_libraries)}")

    console.print()
    console.print("[green]Configuration is valid![/green]")
    return True
