#!/usr/bin/env python
"""Command-line entry point for mnote."""
import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from mnote import __version__
from mnote.config import config, describe_location
from mnote.config_store import ConfigStore
from mnote.exceptions import MnoteError
from mnote.observability import configure_logging
from mnote.services.book_index import BookIndexWriter
from mnote.services.consistency import ConsistencyChecker
from mnote.services.daemon import SyncDaemon
from mnote.services.editor import EditorLauncher
from mnote.services.lock_manager import LockManager
from mnote.services.sync_service import SyncOrchestrator
from mnote.storage.git_client import GitClient
from mnote.storage.note_store import NoteStore
from mnote.storage.search_index import SearchIndex
from mnote.storage.templates import TemplateProvider

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass
class Services:
    """Everything a command needs, wired for one notes root."""
    store: NoteStore
    config_store: ConfigStore
    lock: LockManager
    orchestrator: SyncOrchestrator

    def close(self) -> None:
        self.store.index.close()


def build_services() -> Services:
    root = config.get_root()
    index = SearchIndex(root, config.get_db_path(), config.db_busy_timeout_ms)
    store = NoteStore(root, index=index, templates=TemplateProvider(config.get_templates_dir()))
    config_store = ConfigStore(config.get_config_path())
    lock = LockManager(root, config.lock_stale_seconds, config.lock_poll_interval)
    orchestrator = SyncOrchestrator(
        root,
        GitClient(root, timeout=config.git_timeout),
        config_store,
        lock,
        lock_timeout=config.sync_lock_timeout,
    )
    return Services(store, config_store, lock, orchestrator)


def after_mutation(services: Services) -> None:
    """Regenerate README/INDEX files if enabled, then auto-sync."""
    if services.config_store.get_bool("indexing.enabled", False):
        try:
            BookIndexWriter(services.store).reindex_all()
        except (OSError, MnoteError) as e:
            logger.warning(f"Failed to regenerate book indexes: {e}")
    services.orchestrator.auto_sync()


def _split_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


def _editor(services: Services) -> EditorLauncher:
    return EditorLauncher(services.config_store.get_editor())


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

def cmd_add(args, services: Services) -> int:
    content = args.content
    if content is None and not args.template:
        content = _editor(services).edit()
        if content is None:
            print("Empty note, not saved.")
            return 0
    note = services.store.add_note(
        args.book,
        content or "",
        title=args.title,
        tags=_split_tags(args.tags),
        template=args.template,
    )
    print(f"Note saved to {note.path}")
    after_mutation(services)
    return 0


def cmd_view(args, services: Services) -> int:
    if args.index is not None:
        note = services.store.get_note(args.book, args.index)
        print(note.content)
        return 0
    notes = services.store.get_notes(args.book)
    if not notes:
        print(f"No notes found in book: {args.book}")
        return 0
    for i, note in enumerate(notes, start=1):
        print(f"--- Note {i} ({note.filename}) ---")
        print(note.content)
        print("")
    return 0


def cmd_list(args, services: Services) -> int:
    books = services.store.get_books_recursive()
    if not books:
        print("No books found.")
        return 0
    for book in books:
        print(book)
    return 0


def cmd_find(args, services: Services) -> int:
    results = services.store.find_notes(args.keyword, book=args.book, tag=args.tag)
    if not results:
        print("No matching notes found.")
        return 0
    for result in results:
        print(f"--- {result.book}/{result.filename} ---")
        print(result.content or "")
        print("")
    return 0


def cmd_delete(args, services: Services) -> int:
    note = services.store.get_note(args.book, args.index)
    if not args.force:
        answer = input(f"Delete note {args.index} ({note.filename}) from '{args.book}'? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return 0
    filename = services.store.delete_note(args.book, args.index)
    print(f"Deleted note {filename}")
    after_mutation(services)
    return 0


def cmd_edit(args, services: Services) -> int:
    store = services.store
    if args.new_name:
        new_name = store.rename_book(args.book, args.new_name)
        print(f"Renamed book {args.book} to {new_name}")
        after_mutation(services)
        return 0
    if args.index is None:
        print("Error: a note index is required unless renaming a book (-n)", file=sys.stderr)
        return 2
    if args.target_book:
        moved = store.move_note(args.book, args.index, args.target_book)
        print(f"Moved note to {moved.book}/{moved.filename}")
        after_mutation(services)
        return 0

    note = store.get_note(args.book, args.index)
    content = args.content
    if content is None:
        content = _editor(services).edit(note.content)
        if content is None:
            print("Empty note, not saved.")
            return 0
    store.update_note(note.book, note.filename, content)
    print(f"Updated note {note.filename}")
    after_mutation(services)
    return 0


def cmd_where(args, services: Services) -> int:
    print(f"Notes location: {describe_location()}")
    print(f"Search index: {config.get_db_path()}")
    return 0


def cmd_config(args, services: Services) -> int:
    if args.config_action == "get":
        value = services.config_store.get(args.key)
        print(value if isinstance(value, str) else json.dumps(value))
    else:
        services.config_store.set(args.key, args.value)
        print(f"Set {args.key}")
    return 0


def cmd_templates(args, services: Services) -> int:
    templates = services.store.list_templates()
    if not templates:
        print(f"No templates found in {config.get_templates_dir()}")
        return 0
    for name in templates:
        print(name)
    return 0


def cmd_sync(args, services: Services) -> int:
    if getattr(args, "sync_action", None) == "init":
        result = services.orchestrator.init_sync(args.remote_url, branch=args.branch)
        print(result.message)
        return 0
    print(f"Syncing notes in {config.get_root()}...")
    result = services.orchestrator.sync_notes()
    print(result.message)
    return 0


def cmd_daemon(args, services: Services) -> int:
    interval = args.interval or config.daemon_interval
    print(f"Starting mnote daemon (interval: {interval}s). Press Ctrl+C to stop.")
    SyncDaemon(services.orchestrator, services.lock, interval).run()
    return 0


def cmd_rebuild(args, services: Services) -> int:
    count = ConsistencyChecker(services.store).rebuild()
    print(f"Rebuilt search index: {count} notes indexed")
    return 0


def cmd_check(args, services: Services) -> int:
    report = ConsistencyChecker(services.store).check()
    print(f"Status: {report.status}")
    for book, filename in report.missing_in_index:
        print(f"  missing in index: {book}/{filename}")
    for book, filename in report.missing_on_disk:
        print(f"  missing on disk: {book}/{filename}")
    if not report.is_consistent:
        print("Run 'mnote rebuild' to repair the search index.")
    return 0


def cmd_reindex(args, services: Services) -> int:
    print("Regenerating all README/INDEX files...")
    count = BookIndexWriter(services.store).reindex_all()
    print(f"Index generation complete ({count} books).")
    return 0


# ----------------------------------------------------------------------
# Argument parsing
# ----------------------------------------------------------------------

def _global_options(default=argparse.SUPPRESS) -> argparse.ArgumentParser:
    """Options accepted both before and after the command name.

    Each parser gets its own copy: argparse shares Action objects between
    parents and children, and a subcommand must never write a default over
    a value given before it.
    """
    options = argparse.ArgumentParser(add_help=False)
    options.add_argument(
        "--db-location", "--dbLocation",
        dest="db_location",
        help="Notes root directory (overrides MNOTE_HOME)",
        default=default,
    )
    options.add_argument(
        "--log-level",
        help="Logging level",
        choices=LOG_LEVELS,
        default=default,
    )
    return options


def build_parser() -> argparse.ArgumentParser:

    parser = argparse.ArgumentParser(
        prog="mnote",
        description="Markdown notes organised in books, with search and git sync",
        parents=[_global_options(default=None)],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.set_defaults(func=None)
    sub = parser.add_subparsers(title="commands", metavar="<command>")

    p = sub.add_parser("add", parents=[_global_options()], help="Add a note to a book",
                       description="Add a note to a book")
    p.add_argument("book")
    p.add_argument("content", nargs="?", help="Note content (opens the editor if omitted)")
    p.add_argument("--title", help="Title used for the filename")
    p.add_argument("--tags", help="Comma-separated tags")
    p.add_argument("--template", help="Template from .foam/templates")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("view", parents=[_global_options()], help="View notes in a book",
                       description="View notes in a book")
    p.add_argument("book")
    p.add_argument("index", nargs="?", type=int)
    p.set_defaults(func=cmd_view)

    p = sub.add_parser("list", parents=[_global_options()], help="List all books",
                       description="List all books")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("find", parents=[_global_options()], help="Search notes",
                       description="Search notes by keyword and/or tag")
    p.add_argument("keyword", nargs="?", default="")
    p.add_argument("-b", "--book", help="Only search this book")
    p.add_argument("-t", "--tag", help="Only notes with this exact tag")
    p.set_defaults(func=cmd_find)

    p = sub.add_parser("delete", parents=[_global_options()], help="Delete a note from a book",
                       description="Delete a note from a book")
    p.add_argument("book")
    p.add_argument("index", type=int)
    p.add_argument("-f", "--force", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("edit", parents=[_global_options()], help="Edit, move or rename",
                       description="Edit a note, move it to another book, or rename a book")
    p.add_argument("book")
    p.add_argument("index", nargs="?", type=int)
    p.add_argument("-c", "--content", help="Replace the content without opening the editor")
    p.add_argument("-b", "--book", dest="target_book", help="Move the note to this book")
    p.add_argument("-n", "--name", dest="new_name", help="Rename the book")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("where", parents=[_global_options()], help="Show where notes are stored",
                       description="Show where notes are stored")
    p.set_defaults(func=cmd_where)

    p = sub.add_parser("config", parents=[_global_options()], help="Get or set configuration",
                       description="Get or set configuration values")
    config_sub = p.add_subparsers(dest="config_action", required=True)
    cp = config_sub.add_parser("get", parents=[_global_options()])
    cp.add_argument("key")
    cp = config_sub.add_parser("set", parents=[_global_options()])
    cp.add_argument("key")
    cp.add_argument("value")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("templates", parents=[_global_options()], help="List available templates",
                       description="List available templates")
    p.set_defaults(func=cmd_templates)

    p = sub.add_parser("sync", parents=[_global_options()], help="Sync notes with the git remote",
                       description="Sync notes with the git remote")
    sync_sub = p.add_subparsers(dest="sync_action")
    sp = sync_sub.add_parser("init", parents=[_global_options()], help="Set up syncing with a remote")
    sp.add_argument("remote_url")
    sp.add_argument("--branch", help="Remote branch (default: current branch)")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("daemon", parents=[_global_options()], help="Run periodic sync in the foreground",
                       description="Run periodic sync in the foreground")
    p.add_argument("--interval", type=float, help="Seconds between syncs")
    p.set_defaults(func=cmd_daemon)

    p = sub.add_parser("rebuild", parents=[_global_options()], help="Rebuild the search index",
                       description="Rebuild the search index from note files")
    p.set_defaults(func=cmd_rebuild)

    p = sub.add_parser("check", parents=[_global_options()], help="Compare note files with the index",
                       description="Compare note files with the search index")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("reindex", parents=[_global_options()], help="Regenerate README/INDEX files",
                       description="Regenerate README.md and every INDEX.md")
    p.set_defaults(func=cmd_reindex)

    return parser


def update_config(args) -> None:
    """Update the global config with command line arguments."""
    if args.db_location:
        config.set_db_location(Path(args.db_location))
    if args.log_level:
        config.log_level = args.log_level


def main(argv: Optional[List[str]] = None) -> None:
    """Run one mnote command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    update_config(args)

    log_level = config.get_log_level()
    try:
        configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    if args.func is None:
        parser.print_help()
        return

    services = None
    try:
        services = build_services()
        code = args.func(args, services)
    except MnoteError as e:
        logger.debug(f"Command failed: {e.to_dict()}")
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    finally:
        if services is not None:
            services.close()
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
