"""Command-line interface for posterkeep."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from posterkeep import __version__
from posterkeep.config import AppConfig, get_config, get_data_dir, get_poster_dir, load_config
from posterkeep.errors import ConfigError
from posterkeep.log import setup_logging
from posterkeep.naming import MediaType

if TYPE_CHECKING:
    from posterkeep.importer import BatchCursor
    from posterkeep.plex import PlexClient, PlexLibrary
    from posterkeep.reconcile import CleanupResult, OrphanResult

# Load environment variables from .env file
load_dotenv()

console = Console()

MEDIA_TYPE_CHOICES = [media_type.value for media_type in MediaType]


def _get_config() -> AppConfig:
    try:
        return get_config()
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)


def _connect(cfg: AppConfig) -> PlexClient:
    """Create a Plex client from the configuration, exiting on failure."""
    from posterkeep.config import validate_config
    from posterkeep.plex import PlexClient, PlexError

    try:
        validate_config(cfg)
        return PlexClient(
            url=cfg.plex.url,
            token=cfg.plex.token,
            connect_timeout=cfg.plex.connect_timeout,
            request_timeout=cfg.plex.request_timeout,
        )
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)
    except PlexError as e:
        console.print(f"[red]Plex error:[/red] {e}")
        sys.exit(1)


def _list_libraries(plex: PlexClient) -> list[PlexLibrary]:
    from posterkeep.plex import PlexError

    try:
        return plex.get_libraries()
    except PlexError as e:
        console.print(f"[red]Plex error:[/red] {e}")
        sys.exit(1)


def _select_libraries(libraries: list[PlexLibrary], names: tuple[str, ...]) -> list[PlexLibrary]:
    """Pick libraries by title, exiting if a name is unknown."""
    if not names:
        return libraries
    by_title = {lib.title: lib for lib in libraries}
    unknown = [name for name in names if name not in by_title]
    if unknown:
        console.print(f"[red]Unknown library:[/red] {', '.join(unknown)}")
        console.print(f"Available: {', '.join(by_title) or '(none)'}")
        sys.exit(1)
    return [by_title[name] for name in names]


@click.group()
@click.version_option(version=__version__, prog_name="posterkeep")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("-q", "--quiet", is_flag=True, help="Only show errors and results")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Config file to use instead of the default search paths",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool, config_file: Path | None) -> None:
    """posterkeep - Keep a local poster folder in sync with your Plex server."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    setup_logging(verbose=verbose, quiet=quiet)

    if config_file is not None:
        try:
            load_config(config_file)
        except ConfigError as e:
            console.print(f"[red]Config error:[/red] {e}")
            sys.exit(1)


@main.command(name="auto-import")
@click.option("--force", is_flag=True, help="Run even if the schedule says it is not due")
def auto_import(force: bool) -> None:
    """Run the scheduled import of every enabled media type."""
    from posterkeep.auto_import import LOG_FILENAME, STATUS_COMPLETED, AutoImporter
    from posterkeep.log import add_file_handler, remove_handler

    cfg = _get_config()
    importer = AutoImporter(cfg)
    handler = add_file_handler(importer.data_dir / LOG_FILENAME)
    try:
        report = importer.run(force=force)
    except KeyboardInterrupt:
        console.print("\n[yellow]Import cancelled.[/yellow]")
        sys.exit(130)
    finally:
        remove_handler(handler)

    if report.status != STATUS_COMPLETED:
        style = "red" if report.exit_code else "dim"
        console.print(f"[{style}]{report.message}[/{style}]")
        sys.exit(report.exit_code)

    for media_type, missing in report.missing_libraries.items():
        for library in missing:
            console.print(
                f"[yellow]Library removed:[/yellow] {library.title} "
                f"({media_type.value} ids cleared)"
            )
    if report.cleanup is not None:
        _print_cleanup(report.cleanup)
    for cursor in report.results.values():
        _print_cursor(cursor)


@main.command(name="import")
@click.argument("media_type", type=click.Choice(MEDIA_TYPE_CHOICES))
@click.option(
    "--library",
    "-l",
    "library_names",
    multiple=True,
    help="Library name (repeatable; default: every matching library)",
)
@click.option("--show", "show_title", default=None, help="Only import seasons of this show")
@click.option(
    "--mode",
    type=click.Choice(["overwrite", "skip"]),
    default="overwrite",
    help="What to do with posters that already exist",
)
@click.option(
    "--cursor",
    "cursor_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Run one batch per invocation, keeping progress in this file",
)
@click.pass_context
def import_posters(
    ctx: click.Context,
    media_type: str,
    library_names: tuple[str, ...],
    show_title: str | None,
    mode: str,
    cursor_file: Path | None,
) -> None:
    """Download posters of one media type from Plex."""
    from posterkeep.importer import BatchCursor, OverwriteMode, PosterImporter
    from posterkeep.plex import PlexError
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    kind = MediaType(media_type)
    plex = _connect(cfg)
    store = ValidIdStore(get_data_dir(cfg))
    importer = PosterImporter(
        plex,
        store,
        get_poster_dir(cfg),
        batch_size=cfg.plex.import_batch_size,
        mode=OverwriteMode(mode),
        remove_overlay_label=cfg.plex.remove_overlay_label,
    )

    try:
        if cursor_file is None:
            libraries = _select_libraries(_list_libraries(plex), library_names)
            with console.status(f"Importing {kind.value} posters..."):
                cursor = importer.import_media_type(kind, libraries, show_title=show_title)
            store.close_session()
            _print_cursor(cursor)
            if cursor.failed_libraries:
                sys.exit(1)
            return

        if cursor_file.exists():
            cursor = BatchCursor.model_validate_json(cursor_file.read_text(encoding="utf-8"))
            if cursor.media_type != kind:
                console.print(
                    f"[red]Cursor file holds a {cursor.media_type.value} import, "
                    f"not {kind.value}[/red]"
                )
                sys.exit(1)
            importer.remember_libraries(_list_libraries(plex))
        else:
            libraries = _select_libraries(_list_libraries(plex), library_names)
            cursor = importer.start(kind, libraries, show_title=show_title)

        if not cursor.complete:
            try:
                cursor = importer.run_batch(cursor)
            except PlexError as e:
                cursor = importer.skip_library(cursor, str(e))
        store.close_session()

        if cursor.complete:
            cursor_file.unlink(missing_ok=True)
            _print_cursor(cursor)
        else:
            cursor_file.parent.mkdir(parents=True, exist_ok=True)
            cursor_file.write_text(cursor.model_dump_json(indent=2), encoding="utf-8")
            if not ctx.obj.get("quiet", False):
                console.print(
                    f"Library {cursor.library_index + 1}/{len(cursor.library_ids)}, "
                    f"offset {cursor.offset}: {cursor.totals.processed} items so far. "
                    "Run again to continue."
                )
    except KeyboardInterrupt:
        console.print("\n[yellow]Import cancelled.[/yellow]")
        sys.exit(130)
    finally:
        plex.close()


@main.command()
@click.argument("media_type", type=click.Choice(MEDIA_TYPE_CHOICES))
@click.option("--library", "-l", "library_name", default=None, help="Only check this library")
@click.option("--show", "show_title", default=None, help="Only check seasons of this show")
def orphans(media_type: str, library_name: str | None, show_title: str | None) -> None:
    """Mark posters whose item no longer exists as orphaned.

    Uses the ids recorded by earlier imports; Plex is not contacted.
    """
    from posterkeep.importer import POLICIES
    from posterkeep.libraries import LibraryRegistry
    from posterkeep.reconcile import ReconcileScope, Reconciler
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    kind = MediaType(media_type)
    data_dir = get_data_dir(cfg)
    store = ValidIdStore(data_dir)
    records = LibraryRegistry(data_dir, store).get_libraries(kind)

    if library_name:
        matches = [(key, record) for key, record in records.items() if record.title == library_name]
        if not matches:
            console.print(f"[red]No recorded {kind.value} library named[/red] {library_name}")
            sys.exit(1)
        library_id, record = matches[0]
        scope = ReconcileScope(
            media_type=kind,
            library_ids=[library_id],
            library_name=record.title,
            library_kind=record.type,
            show_title=show_title,
        )
        current_ids = store.get_library_ids(kind, library_id)
    else:
        scope = ReconcileScope(media_type=kind, library_ids=list(records), show_title=show_title)
        current_ids = store.get_all_valid_ids(kind)

    if not current_ids:
        console.print(
            f"[yellow]No stored {kind.value} ids.[/yellow] Run an import first; "
            "every poster would be marked orphaned."
        )
        sys.exit(1)

    directory = get_poster_dir(cfg) / POLICIES[kind].directory_name
    result = Reconciler(store).mark_orphaned_posters(directory, current_ids, scope)
    _print_orphans(kind, result)


@main.command()
def cleanup() -> None:
    """Remove duplicate collection posters and standardize their names."""
    from posterkeep.importer import PosterImporter
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    plex = _connect(cfg)
    try:
        importer = PosterImporter(
            plex,
            ValidIdStore(get_data_dir(cfg)),
            get_poster_dir(cfg),
            batch_size=cfg.plex.import_batch_size,
        )
        result = importer.cleanup_collections(_list_libraries(plex))
    finally:
        plex.close()
    _print_cleanup(result)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--media-type",
    type=click.Choice(MEDIA_TYPE_CHOICES),
    default=None,
    help="Media type of the item (default: from the poster's folder)",
)
def send(path: Path, media_type: str | None) -> None:
    """Upload a local poster to Plex and lock it."""
    from posterkeep.importer import PosterImporter
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    plex = _connect(cfg)
    try:
        importer = PosterImporter(
            plex,
            ValidIdStore(get_data_dir(cfg)),
            get_poster_dir(cfg),
            remove_overlay_label=cfg.plex.remove_overlay_label,
        )
        result = importer.send_to_plex(path, MediaType(media_type) if media_type else None)
    finally:
        plex.close()

    if not result.success:
        console.print(f"[red]Send failed:[/red] {result.message}")
        sys.exit(1)

    console.print(f"[green]{result.message}[/green] (item {result.rating_key}, via {result.method})")
    if not result.locked:
        console.print("[yellow]The poster was not locked and may be replaced by Plex.[/yellow]")


@main.command(name="export")
@click.argument("media_type", type=click.Choice(MEDIA_TYPE_CHOICES))
def export_posters(media_type: str) -> None:
    """Send every managed poster of one media type to Plex."""
    from posterkeep.importer import PosterImporter
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    kind = MediaType(media_type)
    plex = _connect(cfg)
    try:
        importer = PosterImporter(
            plex,
            ValidIdStore(get_data_dir(cfg)),
            get_poster_dir(cfg),
            remove_overlay_label=cfg.plex.remove_overlay_label,
        )
        with console.status(f"Sending {kind.value} posters to Plex..."):
            result = importer.export_to_plex(kind)
    except KeyboardInterrupt:
        console.print("\n[yellow]Export cancelled.[/yellow]")
        sys.exit(130)
    finally:
        plex.close()

    console.print(f"[bold]{kind.value.capitalize()} export[/bold]")
    console.print(f"  {result.successful} sent, {result.failed} failed")
    if cfg.plex.remove_overlay_label:
        console.print(
            f"  {result.labels_removed} Overlay label(s) removed, {result.labels_failed} failed"
        )
    for error in result.errors:
        console.print(f"  [red]{error}[/red]")
    if result.failed:
        sys.exit(1)


@main.command(name="delete-orphans")
@click.argument("media_type", type=click.Choice(MEDIA_TYPE_CHOICES), required=False)
@click.confirmation_option(prompt="Are you sure you want to delete every orphaned poster?")
def delete_orphans(media_type: str | None) -> None:
    """Delete posters tagged as orphaned (all media types by default)."""
    from posterkeep.importer import POLICIES
    from posterkeep.reconcile import Reconciler
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    poster_dir = get_poster_dir(cfg)
    reconciler = Reconciler(ValidIdStore(get_data_dir(cfg)))
    kinds = [MediaType(media_type)] if media_type else list(MediaType)

    failed = False
    for kind in kinds:
        result = reconciler.delete_orphaned_posters(poster_dir / POLICIES[kind].directory_name)
        console.print(f"  {len(result.deleted)} orphaned {kind.value} poster(s) deleted")
        for error in result.errors:
            console.print(f"  [red]{error}[/red]")
        failed = failed or bool(result.errors)
    if failed:
        sys.exit(1)


@main.command()
def libraries() -> None:
    """List the movie and TV libraries on the Plex server."""
    cfg = _get_config()
    plex = _connect(cfg)
    try:
        found = _list_libraries(plex)
    finally:
        plex.close()

    if not found:
        console.print("[dim]No movie or TV libraries found.[/dim]")
        return

    table = Table(title="Plex Libraries")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Type")
    for library in found:
        table.add_row(library.key, library.title, library.type)
    console.print(table)


@main.group()
def ids() -> None:
    """Inspect or clear the stored valid ids."""
    pass


@ids.command(name="show")
def ids_show() -> None:
    """Show stored id counts per media type and library."""
    from posterkeep.libraries import LibraryRegistry
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    data_dir = get_data_dir(cfg)
    store = ValidIdStore(data_dir)
    summary = store.summary()

    if not any(summary.values()):
        console.print("[dim]No ids stored.[/dim]")
        console.print(f"Store location: {store.path}")
        return

    registry = LibraryRegistry(data_dir, store)
    table = Table(title="Stored Valid IDs")
    table.add_column("Media type")
    table.add_column("Library")
    table.add_column("IDs", justify="right")
    for media_type, counts in summary.items():
        titles = {}
        if media_type in MEDIA_TYPE_CHOICES:
            titles = {key: rec.title for key, rec in registry.get_libraries(MediaType(media_type)).items()}
        for library_id, count in counts.items():
            label = f"{titles[library_id]} ({library_id})" if library_id in titles else library_id
            table.add_row(media_type, label, str(count))
    console.print(table)
    console.print(f"Store location: {store.path}")


@ids.command(name="clear")
@click.confirmation_option(prompt="Are you sure you want to clear every stored id?")
def ids_clear() -> None:
    """Forget every stored id."""
    from posterkeep.store import ValidIdStore

    cfg = _get_config()
    count = ValidIdStore(get_data_dir(cfg)).clear_all()

    if count == 0:
        console.print("[dim]The store is already empty.[/dim]")
    else:
        console.print(f"[green]Cleared {count} stored ids.[/green]")


@main.group()
def config() -> None:
    """Manage posterkeep configuration."""
    pass


@config.command(name="show")
def config_show() -> None:
    """Show current configuration."""
    from posterkeep.config import get_config_path

    cfg = _get_config()
    config_file = get_config_path()

    console.print("[bold]Current Configuration[/bold]")
    console.print()

    if config_file:
        console.print(f"[dim]Config file:[/dim] {config_file}")
    else:
        console.print("[dim]Config file:[/dim] (none - using defaults)")
    console.print()

    console.print("[bold]Plex:[/bold]")
    url = cfg.plex.url or "(from PLEX_URL env)"
    token = "(set)" if cfg.plex.token else "(from PLEX_TOKEN env)"
    console.print(f"  URL: {url}")
    console.print(f"  Token: {token}")
    console.print(f"  Timeouts: {cfg.plex.connect_timeout}s connect, {cfg.plex.request_timeout}s request")
    console.print(f"  Batch size: {cfg.plex.import_batch_size}")
    console.print(f"  Remove Overlay label: {cfg.plex.remove_overlay_label}")
    console.print()

    console.print("[bold]Auto-import:[/bold]")
    auto = cfg.auto_import
    console.print(f"  Enabled: {auto.enabled}")
    console.print(f"  Schedule: {auto.schedule}")
    enabled = [
        name
        for name, on in (
            ("movies", auto.import_movies),
            ("shows", auto.import_shows),
            ("seasons", auto.import_seasons),
            ("collections", auto.import_collections),
        )
        if on
    ]
    console.print(f"  Media types: {', '.join(enabled) or '(none)'}")
    if auto.excluded_libraries:
        console.print(f"  Excluded libraries: {', '.join(auto.excluded_libraries)}")
    else:
        console.print("  Excluded libraries: (none)")
    console.print()

    console.print("[bold]Paths:[/bold]")
    console.print(f"  Posters: {get_poster_dir(cfg)}")
    console.print(f"  Data: {get_data_dir(cfg)}")


@config.command(name="path")
def config_path() -> None:
    """Show configuration file paths."""
    from posterkeep.config import find_config_file, get_config_paths

    console.print("[bold]Configuration paths (in priority order):[/bold]")
    config_file = find_config_file()

    for path in get_config_paths():
        if path.exists():
            if path == config_file:
                console.print(f"  [green]{path}[/green] (active)")
            else:
                console.print(f"  {path} (exists)")
        else:
            console.print(f"  [dim]{path}[/dim]")

    console.print()
    console.print("[bold]Other paths:[/bold]")
    console.print(f"  .env file: {Path.cwd() / '.env'}")


@config.command(name="init")
@click.option("--force", is_flag=True, help="Overwrite existing config file")
@click.option(
    "--path",
    "target",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Where to write the file (default: ./posterkeep.ini)",
)
def config_init(force: bool, target: Path | None) -> None:
    """Create a default configuration file."""
    from posterkeep.config import CONFIG_FILENAME, save_default_config

    config_path = target or Path.cwd() / CONFIG_FILENAME

    if config_path.exists() and not force:
        console.print(f"[yellow]Config file already exists:[/yellow] {config_path}")
        console.print("Use --force to overwrite.")
        sys.exit(1)

    save_default_config(config_path)
    console.print(f"[green]Created config file:[/green] {config_path}")
    console.print("Edit this file to customize your settings.")


@config.command(name="validate")
def config_validate() -> None:
    """Check the configuration and the Plex connection."""
    from posterkeep.validation import validate_setup

    if not validate_setup(_get_config()):
        sys.exit(1)


def _print_cursor(cursor: BatchCursor) -> None:
    """Output the totals of a finished import."""
    totals = cursor.totals
    console.print(f"[bold]{cursor.media_type.value.capitalize()} posters[/bold]")
    console.print(
        f"  {totals.successful} downloaded, {totals.unchanged} unchanged, "
        f"{totals.renamed} renamed, {totals.skipped} skipped, {totals.failed} failed"
    )
    for error in totals.errors:
        console.print(f"  [red]{error}[/red]")
    if cursor.failed_libraries:
        console.print(
            f"  [yellow]{len(cursor.failed_libraries)} library(ies) failed; "
            "orphan detection was skipped[/yellow]"
        )
    if cursor.orphans is not None:
        _print_orphans(cursor.media_type, cursor.orphans)


def _print_orphans(media_type: MediaType, result: OrphanResult) -> None:
    console.print(
        f"  {result.orphaned} {media_type.value} poster(s) orphaned "
        f"({result.old_format} old format)"
    )
    for detail in result.details:
        console.print(f"    [dim]{detail.old_name}[/dim] -> {detail.new_name}")
    if result.unmarked:
        console.print(f"  [red]{result.unmarked} poster(s) could not be renamed[/red]")


def _print_cleanup(result: CleanupResult) -> None:
    console.print("[bold]Collection cleanup[/bold]")
    console.print(
        f"  {result.duplicates_found} duplicate file(s), "
        f"{result.deleted} deleted, {result.renamed} renamed"
    )
    for error in result.errors:
        console.print(f"  [red]{error}[/red]")


if __name__ == "__main__":
    main()
