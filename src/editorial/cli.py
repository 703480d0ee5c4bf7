#!/usr/bin/env python3
"""
Editorial Command Line

Usage:
    editorial init-db
    editorial create-user dean-1 dean@university.edu --name "Dean" --role DEAN
    editorial set-role user-42 EDITOR
    editorial audit-export --output audit.csv --format csv
    editorial audit-export --summary
    editorial doi-parse 10.ISUFST.CICT/2025.00001
    editorial serve --port 8000
"""

import argparse
import sys
from typing import List, Optional

from editorial.authorization.audit_logger import AuditAction, SYSTEM_ACTOR
from editorial.authorization.user_manager import Role
from editorial.config import Settings, configure_logging
from editorial.core import EditorialCore
from editorial.errors import EditorialError
from editorial.storage.database import Database
from editorial.workflow.doi import DoiAllocator


def cmd_init_db(settings: Settings, args) -> int:
    with Database(settings.database_path):
        pass
    print(f"Database ready: {settings.database_path}")
    return 0


def cmd_create_user(settings: Settings, args) -> int:
    with EditorialCore(Database(settings.database_path), settings=settings) as core:
        user = core.users.create_user(
            args.user_id,
            args.email,
            name=args.name,
            role=Role.from_string(args.role),
        )
    print(f"Created {user.role.value} {user.user_id} <{user.email}>")
    return 0


def cmd_set_role(settings: Settings, args) -> int:
    """Operator role change; bypasses the DEAN check but is still audited."""
    role = Role.from_string(args.role)
    with EditorialCore(Database(settings.database_path), settings=settings) as core:
        user = core.users.require_user(args.user_id)
        with core.db.transaction() as conn:
            core.users.set_role(user.user_id, role, conn)
            core.audit.record(
                actor_id=SYSTEM_ACTOR,
                actor_email=None,
                action=AuditAction.USER_ROLE_CHANGED.value,
                target_type='user',
                target_id=user.user_id,
                detail={'from': user.role.value, 'to': role.value, 'source': 'cli'},
                conn=conn,
            )
    print(f"{user.user_id}: {user.role.value} -> {role.value}")
    return 0


def print_summary(stats) -> None:
    """Print audit summary statistics."""
    total = stats['total_events']
    print("\n" + "=" * 60)
    print("AUDIT LOG SUMMARY")
    print("=" * 60)
    print(f"Total Entries: {total}")
    if not total:
        print("=" * 60 + "\n")
        return
    print("\nAction Breakdown:")
    for action, count in sorted(stats['by_action'].items(), key=lambda kv: kv[1], reverse=True):
        print(f"  {action}: {count} ({100 * count / total:.1f}%)")
    print("\nTop Actors:")
    for actor, count in stats['top_actors'].items():
        print(f"  {actor}: {count}")
    print(f"\nAccess Denied: {stats['denied_count']} ({stats['denied_percentage']:.1f}%)")
    print("=" * 60 + "\n")


def cmd_audit_export(settings: Settings, args) -> int:
    with EditorialCore(Database(settings.database_path), settings=settings) as core:
        if args.summary:
            print_summary(core.audit.get_statistics())
            return 0
        if not args.output:
            print("Error: --output is required unless --summary is used.", file=sys.stderr)
            return 2
        count = core.audit.export_events(args.output, fmt=args.format)
    print(f"Exported {count} entries to {args.output}")
    return 0


def cmd_doi_parse(settings: Settings, args) -> int:
    # Parsing never touches the store
    allocator = DoiAllocator(None, org=args.org or settings.doi_org, dept=args.dept or settings.doi_dept)
    year, serial = allocator.parse(args.doi)
    print(f"year={year} serial={serial}")
    return 0


def cmd_serve(settings: Settings, args) -> int:
    from editorial.api import EditorialAPI

    api = EditorialAPI(settings=settings)
    print(f"Starting Editorial API on {args.host}:{args.port}")
    print(f"Database: {settings.database_path}")
    print(f"API docs: http://{args.host}:{args.port}/docs")
    api.run(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Editorial workflow administration")
    parser.add_argument("--db", help="SQLite database path (default: EDITORIAL_DB_PATH)")
    parser.add_argument("--log-level", help="Logging level (default: EDITORIAL_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the database schema")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("create-user", help="Create an account")
    p.add_argument("user_id")
    p.add_argument("email")
    p.add_argument("--name")
    p.add_argument("--role", default="AUTHOR", choices=[r.value for r in Role])
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("set-role", help="Change an account's role (operator override)")
    p.add_argument("user_id")
    p.add_argument("role", choices=[r.value for r in Role])
    p.set_defaults(func=cmd_set_role)

    p = sub.add_parser("audit-export", help="Export audit entries or print a summary")
    p.add_argument("--output", "-o", help="Output file path (required unless --summary used)")
    p.add_argument("--format", "-f", choices=["json", "csv"], default="json")
    p.add_argument("--summary", "-s", action="store_true", help="Print summary statistics instead of exporting")
    p.set_defaults(func=cmd_audit_export)

    p = sub.add_parser("doi-parse", help="Validate a DOI and print its year and serial")
    p.add_argument("doi")
    p.add_argument("--org")
    p.add_argument("--dept")
    p.set_defaults(func=cmd_doi_parse)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    p.add_argument("--port", type=int, default=8000, help="Port to bind to")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env(database_path=args.db, log_level=args.log_level)
    configure_logging(settings.log_level)

    try:
        return args.func(settings, args)
    except EditorialError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
