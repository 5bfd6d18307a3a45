#!/usr/bin/env python3
"""
Post one Universal Finance Event (UFE) from a JSON file and print the result.

The event runs through the full posting pipeline (validate, resolve period,
resolve rule, generate lines, balance gate, write journal). The response is
printed as JSON in the same shape the submission endpoint returns.

Usage:
    python3 scripts/post_event.py <ufe.json> [options]

Examples:
    # Fresh SQLite file: create tables, install the bundled salon rules, post
    python3 scripts/post_event.py event.json --database-url sqlite:///ledger.db \\
        --init-db --install-rules

    # Post against Postgres (DATABASE_URL from the environment)
    python3 scripts/post_event.py event.json --actor-id 6f1c...

    # Install a custom rule set for the event's organization first
    python3 scripts/post_event.py event.json --install-rules my_rules.yaml

Exit status is 0 when the event was posted (or already posted), 1 otherwise.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from uuid import UUID, uuid4

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("DATABASE_URL", "sqlite:///ledger.db")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Post one finance event through the posting pipeline.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "file",
        type=Path,
        help="Path to the UFE JSON file.",
    )
    parser.add_argument(
        "--database-url",
        default=DB_URL,
        help=f"Database URL (default: DATABASE_URL env or {DB_URL!r}).",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the tables before posting.",
    )
    parser.add_argument(
        "--install-rules",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Install a rule set YAML for the organization (default: bundled salon set).",
    )
    parser.add_argument(
        "--actor-id",
        default=None,
        help="Actor UUID for audit (default: POST_EVENT_ACTOR_ID env or new UUID).",
    )
    parser.add_argument(
        "--organization-id",
        default=None,
        help="Caller's organization; the event must belong to it.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Emit structured JSON logs on stderr.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    source_path = args.file.resolve()
    if not source_path.is_file():
        print(f"ERROR: File not found: {source_path}", file=sys.stderr)
        return 1
    try:
        payload = json.loads(source_path.read_text())
    except json.JSONDecodeError as e:
        print(f"ERROR: {source_path} is not valid JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(payload, dict):
        print("ERROR: The UFE must be a JSON object.", file=sys.stderr)
        return 1

    actor_id = UUID(args.actor_id) if args.actor_id else UUID(
        os.environ.get("POST_EVENT_ACTOR_ID", str(uuid4()))
    )

    # Lazy imports so we fail fast on args first
    from ledger_config import install_rule_set, load_rule_set
    from ledger_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from ledger_kernel.logging_config import configure_logging
    from ledger_kernel.services.posting_pipeline import PostingPipeline

    configure_logging(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        init_engine_from_url(args.database_url)
        if args.init_db:
            create_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    session = get_session()
    try:
        if args.install_rules is not None:
            try:
                organization_id = UUID(str(payload.get("organization_id")))
            except ValueError:
                print("ERROR: --install-rules needs a UUID organization_id in the event.", file=sys.stderr)
                return 1
            rule_set = load_rule_set(args.install_rules) if args.install_rules else None
            version = install_rule_set(session, organization_id, rule_set, actor_id)
            session.commit()
            print(f"Installed rule set (version {version}) for {organization_id}", file=sys.stderr)

        pipeline = PostingPipeline(session)
        result = pipeline.post_with_retry(
            payload,
            actor_id,
            organization_id=args.organization_id,
        )
        print(json.dumps(result.to_payload(), indent=2, default=str))
        return 0 if result.is_success else 1
    except Exception as e:
        session.rollback()
        print(f"ERROR: {e}", file=sys.stderr)
        raise
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
