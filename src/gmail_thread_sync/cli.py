"""Command-line interface for Gmail Thread Sync.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog

from gmail_thread_sync import __version__
from gmail_thread_sync.cache import ThreadCacheRepository
from gmail_thread_sync.config import Settings, get_settings
from gmail_thread_sync.exceptions import MailSyncError
from gmail_thread_sync.gmail.parsing import parse_address_list
from gmail_thread_sync.models import MailThread
from gmail_thread_sync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()


def _add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite cache database (default: settings cache_db_path)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gmail-sync", description="Gmail Thread Sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("auth", help="Authorize Gmail access and store the token")

    sync_parser = subparsers.add_parser("sync", help="Fetch new or changed threads")
    sync_parser.add_argument(
        "--count",
        type=int,
        default=None,
        help="Number of threads to fetch (default: settings thread_page_size)",
    )
    sync_parser.add_argument(
        "--strategy",
        choices=["incremental", "accumulate"],
        default=None,
        help="Fetch strategy (default: settings fetch_strategy)",
    )
    _add_db_argument(sync_parser)

    threads_parser = subparsers.add_parser("threads", help="List cached threads")
    threads_parser.add_argument("--limit", type=int, default=25, help="Max threads")
    _add_db_argument(threads_parser)

    show_parser = subparsers.add_parser("show", help="Print a cached thread")
    show_parser.add_argument("thread_id", help="Gmail thread ID")
    _add_db_argument(show_parser)

    format_parser = subparsers.add_parser("format", help="Format a cached thread with AI")
    format_parser.add_argument("thread_id", help="Gmail thread ID")
    _add_db_argument(format_parser)

    send_parser = subparsers.add_parser("send", help="Send a new plain-text message")
    send_parser.add_argument("--to", required=True, help="Comma-separated recipients")
    send_parser.add_argument("--cc", default=None, help="Comma-separated Cc recipients")
    send_parser.add_argument("--subject", default="", help="Subject line")
    send_parser.add_argument("--body", required=True, help="Message body")
    _add_db_argument(send_parser)

    reply_parser = subparsers.add_parser("reply", help="Reply to the last message of a thread")
    reply_parser.add_argument("thread_id", help="Gmail thread ID")
    reply_parser.add_argument("--body", required=True, help="Reply body")
    _add_db_argument(reply_parser)

    cache_parser = subparsers.add_parser("cache", help="Inspect or clear the local cache")
    cache_sub = cache_parser.add_subparsers(dest="cache_command", required=True)
    stats_parser = cache_sub.add_parser("stats", help="Show cache stats")
    _add_db_argument(stats_parser)
    clear_parser = cache_sub.add_parser("clear", help="Delete all cached threads")
    _add_db_argument(clear_parser)

    return parser


def _settings_for(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    updates = {}
    if getattr(args, "db", None) is not None:
        updates["cache_db_path"] = args.db
    if getattr(args, "strategy", None) is not None:
        updates["fetch_strategy"] = args.strategy
    return settings.model_copy(update=updates) if updates else settings


def _open_cache(settings: Settings) -> ThreadCacheRepository:
    repo = ThreadCacheRepository(settings.cache_db_path)
    repo.initialize()
    return repo


def _print_thread_line(thread: MailThread) -> None:
    sender = thread.primary_sender.display_name if thread.primary_sender else "(unknown sender)"
    unread = f"{thread.unread_count} unread" if thread.unread_count else "read"
    date_part = thread.last_message_date.isoformat() if thread.messages else "(no date)"
    print(f"{thread.id}\t{date_part}\t{unread}\t{sender}\t{thread.subject}")


async def _cmd_auth(args: argparse.Namespace) -> int:
    from gmail_thread_sync.gmail.auth import GoogleTokenProvider

    settings = _settings_for(args)
    await GoogleTokenProvider(settings)()
    print(f"Authorized. Token stored in {settings.gmail_token_path}")
    return 0


async def _cmd_sync(args: argparse.Namespace) -> int:
    settings = _settings_for(args)
    orchestrator = SyncOrchestrator.from_settings(settings)
    try:
        await orchestrator.load_cached()
        before = len(orchestrator.snapshot.threads)
        await orchestrator.refresh(args.count)
    finally:
        await orchestrator.close()

    snapshot = orchestrator.snapshot
    if snapshot.error_message:
        print(f"Sync failed: {snapshot.error_message}", file=sys.stderr)
        return 1

    print(
        f"Synced {len(snapshot.threads)} threads ({len(snapshot.threads) - before} new) "
        f"into {settings.cache_db_path}" + (" - more available" if snapshot.has_more else "")
    )
    return 0


def _cmd_threads(args: argparse.Namespace) -> int:
    repo = _open_cache(_settings_for(args))
    for thread in repo.load_threads(limit=args.limit):
        _print_thread_line(thread)
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    repo = _open_cache(_settings_for(args))
    thread = repo.get_thread(args.thread_id)
    if thread is None:
        print(f"Thread not found: {args.thread_id}", file=sys.stderr)
        return 1

    print(f"Subject: {thread.subject}")
    for message in thread.messages:
        print()
        print(f"From: {message.sender.display_name} <{message.sender.email}>")
        print(f"Date: {message.date.isoformat()}")
        print()
        print(message.display_body)
    return 0


async def _cmd_format(args: argparse.Namespace) -> int:
    settings = _settings_for(args)
    orchestrator = SyncOrchestrator.from_settings(settings)
    try:
        if not orchestrator.pipeline.is_available:
            print("AI formatting is not configured (set MAIL_SYNC_AI_API_KEY)", file=sys.stderr)
            return 1
        await orchestrator.load_cached()
        if orchestrator.snapshot.thread(args.thread_id) is None:
            print(f"Thread not found: {args.thread_id}", file=sys.stderr)
            return 1
        count = await orchestrator.format_thread(args.thread_id)
    finally:
        await orchestrator.close()

    print(f"Formatted {count} messages")
    return 0


async def _cmd_send(args: argparse.Namespace) -> int:
    settings = _settings_for(args)
    orchestrator = SyncOrchestrator.from_settings(settings)
    try:
        orchestrator.start_new_message()
        orchestrator.update_draft(
            recipients=tuple(parse_address_list(args.to)),
            cc_recipients=tuple(parse_address_list(args.cc)),
            subject=args.subject,
            body=args.body,
        )
        sent = await orchestrator.send_draft()
    finally:
        await orchestrator.close()

    if not sent:
        print(f"Send failed: {orchestrator.snapshot.error_message}", file=sys.stderr)
        return 1
    print("Message sent")
    return 0


async def _cmd_reply(args: argparse.Namespace) -> int:
    settings = _settings_for(args)
    orchestrator = SyncOrchestrator.from_settings(settings)
    try:
        await orchestrator.load_cached()
        if orchestrator.snapshot.thread(args.thread_id) is None:
            await orchestrator.refresh_thread(args.thread_id)
        if orchestrator.snapshot.thread(args.thread_id) is None:
            print(f"Thread not found: {args.thread_id}", file=sys.stderr)
            return 1
        orchestrator.select_thread(args.thread_id)
        sent = await orchestrator.send_reply(args.body)
    finally:
        await orchestrator.close()

    if not sent:
        print(f"Reply failed: {orchestrator.snapshot.error_message}", file=sys.stderr)
        return 1
    print("Reply sent")
    return 0


def _cmd_cache_stats(args: argparse.Namespace) -> int:
    settings = _settings_for(args)
    stats = _open_cache(settings).stats()
    print(f"Threads: {stats.total_threads}")
    print(f"Messages: {stats.total_messages}")
    print(f"Unread messages: {stats.unread_messages}")
    print(f"AI-formatted messages: {stats.sanitized_messages}")
    if stats.newest_message_date:
        print(f"Newest message: {stats.newest_message_date.isoformat()}")
    return 0


def _cmd_cache_clear(args: argparse.Namespace) -> int:
    settings = _settings_for(args)
    _open_cache(settings).clear()
    print(f"Cleared {settings.cache_db_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Gmail Thread Sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )

    logger.info("gmail_thread_sync_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        if parsed.command == "auth":
            return asyncio.run(_cmd_auth(parsed))
        if parsed.command == "sync":
            return asyncio.run(_cmd_sync(parsed))
        if parsed.command == "threads":
            return _cmd_threads(parsed)
        if parsed.command == "show":
            return _cmd_show(parsed)
        if parsed.command == "format":
            return asyncio.run(_cmd_format(parsed))
        if parsed.command == "send":
            return asyncio.run(_cmd_send(parsed))
        if parsed.command == "reply":
            return asyncio.run(_cmd_reply(parsed))
        if parsed.command == "cache":
            if parsed.cache_command == "stats":
                return _cmd_cache_stats(parsed)
            if parsed.cache_command == "clear":
                return _cmd_cache_clear(parsed)
    except MailSyncError as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc.user_message}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
