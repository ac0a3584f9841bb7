"""``caseflow`` command line: schema bootstrap, offline cluster scan, dev tokens."""

import argparse
import json
import logging
import sys
from dataclasses import replace

from caseflow.access import Principal
from caseflow.config import AUTH_SECRET, SUPER_ADMIN_ROLE
from caseflow.db.session import init_db, make_engine, make_session_factory
from caseflow.dedup.service import DeduplicationService
from caseflow.dedup.settings import MatchSettings
from caseflow.security import ACCESS_TOKEN_TTL_SECONDS, issue_access_token

logger = logging.getLogger(__name__)

_CLI_PRINCIPAL = Principal(id="cli", role=SUPER_ADMIN_ROLE, name="caseflow-cli")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-db":
        init_db(make_engine(args.database_url))
        print("Database schema ready")
        return 0

    if args.command == "scan-clusters":
        return scan_clusters(
            database_url=args.database_url,
            page=args.page,
            limit=args.limit,
            grouping=args.grouping,
        )

    if args.command == "issue-token":
        print(issue_access_token(
            args.user_id,
            args.role,
            AUTH_SECRET,
            name=args.name,
            ttl_seconds=args.ttl,
        ))
        return 0

    parser.print_help()
    return 1


def scan_clusters(
    *,
    database_url: str | None,
    page: int,
    limit: int,
    grouping: str | None,
) -> int:
    settings = MatchSettings.from_env()
    if grouping:
        settings = replace(settings, cluster_grouping=grouping)

    service = DeduplicationService(make_session_factory(make_engine(database_url)), settings)
    result = service.clusters(_CLI_PRINCIPAL, page=page, limit=limit)
    json.dump(result.to_dict(), sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="caseflow", description="CaseFlow deduplication CLI")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create missing tables (and pg_trgm on PostgreSQL)")

    scan = subparsers.add_parser("scan-clusters", help="Print duplicate clusters as JSON")
    scan.add_argument("--page", type=int, default=1)
    scan.add_argument("--limit", type=int, default=20)
    scan.add_argument("--grouping", choices=["per_field", "coalesce"], default=None)

    token = subparsers.add_parser("issue-token", help="Mint a bearer token (development only)")
    token.add_argument("user_id")
    token.add_argument("--role", default="BACKEND")
    token.add_argument("--name", default=None)
    token.add_argument("--ttl", type=int, default=ACCESS_TOKEN_TTL_SECONDS)

    return parser


if __name__ == "__main__":
    sys.exit(main())
