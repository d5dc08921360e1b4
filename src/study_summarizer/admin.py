"""Operator command line for the provider key pool.

Usage::

    python -m study_summarizer.admin list
    python -m study_summarizer.admin add sk-or-... [--provider openrouter]
    python -m study_summarizer.admin deactivate <id>
    python -m study_summarizer.admin reactivate <id>
    python -m study_summarizer.admin delete <id>
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

from study_summarizer.config import get_settings
from study_summarizer.keys.pool import CredentialNotFound, KeyPool
from study_summarizer.keys.storage import CredentialStorage
from study_summarizer.logging import get_logger, setup_logging
from study_summarizer.security.cipher import ConfigurationError

log = get_logger("study_summarizer.admin")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage provider API keys")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List keys (masked)")

    add = commands.add_parser("add", help="Add a new key")
    add.add_argument("key", help="Plaintext API key")
    add.add_argument("--provider", default=None, help="Provider tag (default from settings)")

    for name, text in (
        ("deactivate", "Deactivate a key (soft delete)"),
        ("reactivate", "Reactivate a key and clear its failures"),
        ("delete", "Delete a key permanently"),
    ):
        command = commands.add_parser(name, help=text)
        command.add_argument("id", help="Key id")

    return parser


def _format_row(row: dict[str, object]) -> str:
    status = "active" if row["is_active"] else "inactive"
    return (
        f"{row['id']}  ...{row['last_chars']}  {row['provider']:<12} {status:<8} "
        f"fails={row['fail_count']}  last_used={row['last_used'] or '-'}  "
        f"disabled_until={row['disabled_until'] or '-'}"
    )


async def dispatch(args: argparse.Namespace, pool: KeyPool) -> int:
    """Run one parsed command against *pool*. Returns the exit code."""
    try:
        if args.command == "list":
            credentials = await pool.list_credentials()
            if not credentials:
                print("No API keys configured.")
            for credential in credentials:
                print(_format_row(credential.to_dict()))
        elif args.command == "add":
            key = args.key.strip()
            if not key:
                print("API key is required.", file=sys.stderr)
                return 2
            credential_id = await pool.add_credential(key, args.provider)
            print(f"Added key {credential_id}")
        elif args.command == "deactivate":
            await pool.deactivate(args.id)
            print(f"Deactivated key {args.id}")
        elif args.command == "reactivate":
            await pool.reactivate(args.id)
            print(f"Reactivated key {args.id}")
        elif args.command == "delete":
            await pool.delete(args.id)
            print(f"Deleted key {args.id}")
    except CredentialNotFound:
        print(f"API key not found: {args.id}", file=sys.stderr)
        return 1
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    return 0


async def main(argv: Sequence[str] | None = None) -> int:
    """Parse *argv*, connect to the key store and run the command."""
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)
    settings = get_settings()

    storage = await CredentialStorage.connect(settings.postgres_dsn)
    try:
        pool = KeyPool(storage, default_provider=settings.default_provider)
        return await dispatch(args, pool)
    finally:
        await storage.close()


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
