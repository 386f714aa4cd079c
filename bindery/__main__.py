"""CLI entry point for Bindery."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .drafts import BookService, ChapterService, HistoryService
from .errors import BinderyError
from .models import ChapterStatus
from .nostr import LocalKeySigner, RelayClient, probe_relay
from .store import LocalStore, RelaySetting, RelaySettings
from .sync import DraftSyncService, RestoreStatus, SyncSession, SyncStatus, TaskSupervisor

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


@dataclass
class App:
    """Wired services for one CLI invocation."""

    config: Config
    store: LocalStore
    relay_settings: RelaySettings
    supervisor: TaskSupervisor
    sync: DraftSyncService | None

    @property
    def books(self) -> BookService:
        return BookService(self.store, self.sync, self.supervisor)

    @property
    def chapters(self) -> ChapterService:
        return ChapterService(self.store, self.sync, self.supervisor)

    @property
    def history(self) -> HistoryService:
        return HistoryService(self.store, self.config.history)

    def require_sync(self) -> DraftSyncService:
        if self.sync is None:
            raise BinderyError(
                "No identity configured (set identity.secret_key or BINDERY_SECRET_KEY)"
            )
        return self.sync

    async def close(self) -> None:
        await self.supervisor.drain(timeout=self.config.relays.publish_timeout_seconds * 2)
        if self.sync is not None:
            self.sync.clear_session()
        self.store.close()


async def open_app(config: Config) -> App:
    """Open the store and, when an identity is configured, the sync service."""
    store = LocalStore(config.store.db_path)
    store.connect()
    relay_settings = RelaySettings(store, config.relays)
    supervisor = TaskSupervisor()

    sync = None
    if config.identity.secret_key:
        signer = LocalKeySigner(config.identity.secret_key)
        session = SyncSession()
        session.login(await signer.get_public_key(), local_secret=signer.secret_hex)
        client = RelayClient(
            publish_timeout=config.relays.publish_timeout_seconds,
            fetch_timeout=config.relays.fetch_timeout_seconds,
        )
        sync = DraftSyncService(
            session=session,
            store=store,
            relay_settings=relay_settings,
            signer=signer,
            publisher=client,
            source=client,
            scope=config.sync.scope,
            restore_limit=config.sync.restore_limit,
            restore_all_limit=config.sync.restore_all_limit,
            signer_timeout=config.identity.signer_timeout_seconds,
        )
    return App(config, store, relay_settings, supervisor, sync)


async def cmd_book_create(args: argparse.Namespace, app: App) -> int:
    book = await app.books.create_book(args.title, summary=args.summary, cover=args.cover)
    print(f"{book.id}  {book.d}  {book.title}")
    return 0


async def cmd_book_list(args: argparse.Namespace, app: App) -> int:
    books = app.books.list_books()
    if not books:
        print("No books")
    for book in books:
        print(f"{book.id}  {book.title}  ({len(book.chapter_order)} chapters)")
    return 0


async def cmd_book_delete(args: argparse.Namespace, app: App) -> int:
    await app.books.delete_book(args.book_id)
    print(f"Deleted book {args.book_id}")
    return 0


async def cmd_chapter_add(args: argparse.Namespace, app: App) -> int:
    content = args.file.read_text() if args.file else ""
    chapter = await app.chapters.create_chapter(
        args.book_id, args.title, content_md=content, status=ChapterStatus(args.status)
    )
    print(f"{chapter.id}  {chapter.d}  {chapter.title}")
    return 0


async def cmd_chapter_update(args: argparse.Namespace, app: App) -> int:
    chapter = app.store.get_chapter(args.chapter_id)
    if chapter is None:
        print(f"Chapter {args.chapter_id} not found", file=sys.stderr)
        return 1
    if args.file:
        if chapter.content_md:
            app.history.create_snapshot(chapter.id, chapter.content_md, "before update")
        chapter.content_md = args.file.read_text()
    if args.title:
        chapter.title = args.title
    if args.status:
        chapter.status = ChapterStatus(args.status)
    await app.chapters.update_chapter(chapter)
    print(f"Updated chapter {chapter.id}")
    return 0


async def cmd_chapter_delete(args: argparse.Namespace, app: App) -> int:
    await app.chapters.delete_chapter(args.chapter_id)
    print(f"Deleted chapter {args.chapter_id}")
    return 0


async def cmd_sync(args: argparse.Namespace, app: App) -> int:
    result = await app.require_sync().sync_book(args.book_id, force=args.force)
    if result.status == SyncStatus.UNCHANGED:
        print("Unchanged since last sync")
        return 0
    print(f"Published event {result.event_id}")
    if result.report is not None:
        print(f"  Accepted: {len(result.report.accepted)}/{len(result.relays)} relays")
        for url in result.report.failed:
            print(f"  Failed: {url}")
    return 0


async def cmd_restore(args: argparse.Namespace, app: App) -> int:
    sync = app.require_sync()
    result = await (sync.restore_all_snapshots() if args.all else sync.restore_latest_snapshot())
    if result.status == RestoreStatus.NO_EVENTS:
        print("No snapshots found")
    elif result.status == RestoreStatus.ALREADY_APPLIED:
        print("Already up to date")
    else:
        print(f"Applied {len(result.event_ids)} snapshot(s)")
    if result.failed:
        print(f"Skipped {len(result.failed)} unreadable snapshot(s)")
    return 0


async def cmd_history_snapshot(args: argparse.Namespace, app: App) -> int:
    chapter = app.store.get_chapter(args.chapter_id)
    if chapter is None:
        print(f"Chapter {args.chapter_id} not found", file=sys.stderr)
        return 1
    entry = app.history.create_snapshot(chapter.id, chapter.content_md, args.reason)
    print(f"Recorded revision {entry.id}")
    return 0


async def cmd_history_publish(args: argparse.Namespace, app: App) -> int:
    result = await app.require_sync().publish_chapter_snapshots(args.chapter_id)
    print(f"Published event {result.event_id}")
    return 0


async def cmd_history_restore(args: argparse.Namespace, app: App) -> int:
    result = await app.require_sync().restore_chapter_snapshots(args.chapter_id)
    if result.status == RestoreStatus.APPLIED:
        print(f"Restored {len(result.plans[0].history)} revision(s)")
    elif result.status == RestoreStatus.NO_EVENTS:
        print("No history snapshots found")
    else:
        print("Already up to date")
    return 0


async def cmd_relays_list(args: argparse.Namespace, app: App) -> int:
    for relay in app.relay_settings.get_relays():
        print(f"{'on ' if relay.enabled else 'off'}  {relay.url}")
    return 0


async def cmd_relays_set(args: argparse.Namespace, app: App) -> int:
    if args.reset:
        app.relay_settings.reset_to_defaults()
    else:
        app.relay_settings.set_relays([RelaySetting(url) for url in args.urls])
    return await cmd_relays_list(args, app)


async def cmd_status(args: argparse.Namespace, app: App) -> int:
    """Report identity, local store and relay reachability."""
    relays = app.relay_settings.get_relays()
    probes = await asyncio.gather(
        *(probe_relay(r.url) for r in relays if r.enabled)
    )
    status_data = {
        "timestamp": datetime.now().isoformat(),
        "identity": {
            "configured": app.sync is not None,
            "pubkey": app.sync.session.pubkey if app.sync else None,
        },
        "store": {"db_path": str(app.store.db_path), **app.store.get_stats()},
        "relays": [
            {
                "url": p.url,
                "ok": p.ok,
                "latency_ms": p.latency_ms,
                "name": p.name,
                "error": p.error,
            }
            for p in probes
        ],
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("Bindery Status Check")
    print("====================")
    identity = status_data["identity"]
    print(f"Identity: {identity['pubkey'] if identity['configured'] else 'not configured'}")
    store = status_data["store"]
    print(f"Store ({store['db_path']}):")
    print(f"  Books: {store['books']}  Chapters: {store['chapters']}  Revisions: {store['history']}")
    print()
    print("Relays:")
    for probe in probes:
        if probe.ok:
            print(f"  {probe.url}: reachable ({probe.latency_ms} ms) {probe.name or ''}")
        else:
            print(f"  {probe.url}: not reachable ({probe.error})")
    return 0


async def cmd_key(args: argparse.Namespace, app: App) -> int:
    """Print the public half of the derived sync key."""
    sync = app.require_sync()
    key = await sync.keys.get_scoped_key(args.scope or app.config.sync.scope)
    print(key.public_key_hex)
    return 0


async def run_command(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    app = await open_app(config)
    try:
        return await args.func(args, app)
    except BinderyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.close()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="bindery",
        description="Local-first book drafts with encrypted sync over Nostr relays",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Book commands
    book_parser = subparsers.add_parser("book", help="Manage books")
    book_subparsers = book_parser.add_subparsers(dest="book_command", help="Book commands")

    book_create = book_subparsers.add_parser("create", help="Create a book")
    book_create.add_argument("title")
    book_create.add_argument("--summary", default=None)
    book_create.add_argument("--cover", default=None, help="Cover image URL")
    book_create.set_defaults(func=cmd_book_create)

    book_list = book_subparsers.add_parser("list", help="List books")
    book_list.set_defaults(func=cmd_book_list)

    book_delete = book_subparsers.add_parser("delete", help="Delete a book and its chapters")
    book_delete.add_argument("book_id")
    book_delete.set_defaults(func=cmd_book_delete)

    # Chapter commands
    chapter_parser = subparsers.add_parser("chapter", help="Manage chapter drafts")
    chapter_subparsers = chapter_parser.add_subparsers(dest="chapter_command", help="Chapter commands")

    chapter_add = chapter_subparsers.add_parser("add", help="Append a chapter to a book")
    chapter_add.add_argument("book_id")
    chapter_add.add_argument("title")
    chapter_add.add_argument("-f", "--file", type=Path, default=None, help="Markdown content")
    chapter_add.add_argument("--status", choices=["draft", "ready"], default="draft")
    chapter_add.set_defaults(func=cmd_chapter_add)

    chapter_update = chapter_subparsers.add_parser("update", help="Edit a chapter")
    chapter_update.add_argument("chapter_id")
    chapter_update.add_argument("--title", default=None)
    chapter_update.add_argument("-f", "--file", type=Path, default=None, help="Markdown content")
    chapter_update.add_argument("--status", choices=["draft", "ready"], default=None)
    chapter_update.set_defaults(func=cmd_chapter_update)

    chapter_delete = chapter_subparsers.add_parser("delete", help="Delete a chapter")
    chapter_delete.add_argument("chapter_id")
    chapter_delete.set_defaults(func=cmd_chapter_delete)

    # Sync commands
    sync_parser = subparsers.add_parser("sync", help="Publish an encrypted snapshot of a book")
    sync_parser.add_argument("book_id")
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Publish even if nothing changed",
    )
    sync_parser.set_defaults(func=cmd_sync)

    restore_parser = subparsers.add_parser("restore", help="Restore drafts from relays")
    restore_parser.add_argument(
        "--all",
        action="store_true",
        help="Restore every book, not only the most recently synced one",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # History commands
    history_parser = subparsers.add_parser("history", help="Chapter revision history")
    history_subparsers = history_parser.add_subparsers(dest="history_command", help="History commands")

    history_snapshot = history_subparsers.add_parser("snapshot", help="Record a revision")
    history_snapshot.add_argument("chapter_id")
    history_snapshot.add_argument("--reason", default="manual")
    history_snapshot.set_defaults(func=cmd_history_snapshot)

    history_publish = history_subparsers.add_parser("publish", help="Sync a chapter's history")
    history_publish.add_argument("chapter_id")
    history_publish.set_defaults(func=cmd_history_publish)

    history_restore = history_subparsers.add_parser("restore", help="Restore a chapter's history")
    history_restore.add_argument("chapter_id")
    history_restore.set_defaults(func=cmd_history_restore)

    # Relay commands
    relays_parser = subparsers.add_parser("relays", help="Manage sync relays")
    relays_subparsers = relays_parser.add_subparsers(dest="relays_command", help="Relay commands")

    relays_list = relays_subparsers.add_parser("list", help="List relays")
    relays_list.set_defaults(func=cmd_relays_list)

    relays_set = relays_subparsers.add_parser("set", help="Replace the relay list")
    relays_set.add_argument("urls", nargs="*")
    relays_set.add_argument("--reset", action="store_true", help="Restore default relays")
    relays_set.set_defaults(func=cmd_relays_set)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check identity and relay status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    key_parser = subparsers.add_parser("key", help="Show the derived sync public key")
    key_parser.add_argument("--scope", default=None)
    key_parser.set_defaults(func=cmd_key)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    # Group commands require their own subcommand
    groups = {
        "book": (book_parser, "book_command"),
        "chapter": (chapter_parser, "chapter_command"),
        "history": (history_parser, "history_command"),
        "relays": (relays_parser, "relays_command"),
    }
    if args.command in groups:
        group_parser, attr = groups[args.command]
        if not getattr(args, attr):
            group_parser.print_help()
            return 1

    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
