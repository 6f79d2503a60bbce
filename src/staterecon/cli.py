"""Command-line interface for staterecon."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from .config import settings


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="staterecon - State reconciliation and audit for the creator CRM"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("serve", help="Start the web server")
    server_parser.add_argument(
        "--host", default=settings.host, help=f"Host to bind to (default: {settings.host})"
    )
    server_parser.add_argument(
        "--port", type=int, default=settings.port, help=f"Port to bind to (default: {settings.port})"
    )
    server_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # Propose command
    propose_parser = subparsers.add_parser(
        "propose", help="Print the proposed mappings for the current records"
    )
    propose_parser.add_argument("--db", type=Path, help="Database path (default: from settings)")

    # Audit command
    audit_parser = subparsers.add_parser("audit", help="Print the recent activity feed")
    audit_parser.add_argument("--db", type=Path, help="Database path (default: from settings)")
    audit_parser.add_argument("--search", help="Filter by action, email or table")
    audit_parser.add_argument("--limit", type=int, default=20, help="Entries to show (default: 20)")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "propose":
        asyncio.run(run_propose(args.db))
    elif args.command == "audit":
        asyncio.run(run_audit(args.db, args.search, args.limit))
    else:
        parser.print_help()
        sys.exit(1)


def run_server(host: str, port: int, reload: bool):
    """Run the web server."""
    uvicorn.run(
        "staterecon.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


async def run_propose(db_path: Optional[Path] = None):
    """Load a session and print its proposal without committing."""
    from .context import CoreContext
    from .engine import retry_transient

    context = await CoreContext.open(settings.with_overrides(database_path=db_path))
    try:
        session = context.new_session()
        mapping_set = await retry_transient(session.load)
        summary = mapping_set.summary()
        print(f"Proposed mappings: {summary.total}")
        print(
            f"  approved={summary.approved} pending={summary.pending} "
            f"auto_selected={summary.auto_selected}"
        )
        print("=" * 60)
        for entry in mapping_set:
            choice = entry.chosen_canonical_name or "-"
            marker = "auto" if entry.auto_selected else entry.status.value
            print(f"{entry.unclean_value!r:30} -> {choice:25} {entry.confidence:3d} [{marker}]")
            if not entry.chosen_canonical_id:
                for candidate in entry.top_candidates:
                    print(f"{'':34}{candidate.canonical_name} ({candidate.score}, {candidate.reason.value})")
    finally:
        await context.close()


async def run_audit(db_path: Optional[Path] = None, search: Optional[str] = None, limit: int = 20):
    """Print the newest audit entries."""
    from .audit import AuditQuery
    from .context import CoreContext
    from .engine import retry_transient

    context = await CoreContext.open(settings.with_overrides(database_path=db_path))
    try:
        query = AuditQuery(search=search, page_size=max(1, min(limit, 500)))
        page = await retry_transient(lambda: context.audit.query(query))
        print(f"Audit entries: {page.total} (showing {len(page.items)})")
        print("=" * 60)
        for entry in page.items:
            who = entry.principal_email or entry.principal_id or "-"
            print(
                f"{entry.timestamp.isoformat()} {entry.risk_level.value:6} "
                f"{entry.action_type:26} {entry.table_name or '-':10} {who}"
            )
    finally:
        await context.close()


if __name__ == "__main__":
    main()
