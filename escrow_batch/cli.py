"""
escrow-ledger command line: periodic ledger jobs.

Usage:
    escrow-ledger sweep [--as-of 2024-02-01T00:00:00]
    escrow-ledger auto-match [--limit 100]
    escrow-ledger serve-scheduler [--interval 300]
    escrow-ledger init-db

The database URL comes from --database-url or ESCROW_DATABASE_URL; the
configuration file from --config or ESCROW_CONFIG_PATH (packaged default
otherwise).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from datetime import datetime
from typing import Any

from escrow_batch.scheduler import EscrowScheduler
from escrow_config import get_active_config
from escrow_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from escrow_kernel.exceptions import EscrowKernelError
from escrow_kernel.logging_config import configure_logging, get_logger
from escrow_services.orchestrator import EscrowOrchestrator

DATABASE_URL_ENV = "ESCROW_DATABASE_URL"

logger = get_logger("batch.cli")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="escrow-ledger",
        description="Escrow ledger periodic jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get(DATABASE_URL_ENV),
        help=f"SQLAlchemy database URL (default: ${DATABASE_URL_ENV}).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the escrow YAML configuration.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep", help="Release escrow whose hold has elapsed.")
    sweep.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="Release as of this ISO timestamp (default: now).",
    )

    match = sub.add_parser("auto-match", help="Auto-match pending incoming payments.")
    match.add_argument("--limit", type=int, default=None)

    serve = sub.add_parser("serve-scheduler", help="Run sweep and auto-match on an interval.")
    serve.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between ticks (default: release_sweep.interval_seconds).",
    )

    sub.add_parser("init-db", help="Create the ledger tables.")

    return parser.parse_args(argv)


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, default=str, sort_keys=True))


def build_scheduler(
    orchestrator: EscrowOrchestrator,
    interval_seconds: float | None = None,
) -> EscrowScheduler:
    config = orchestrator.config
    jobs = {"release_sweep": orchestrator.run_release_sweep}
    if config.reconciliation.auto_match:
        jobs["auto_match"] = orchestrator.run_auto_match
    return EscrowScheduler(
        jobs,
        interval_seconds=interval_seconds or config.release_sweep.interval_seconds,
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=getattr(logging, args.log_level))

    if not args.database_url:
        print(f"error: --database-url or ${DATABASE_URL_ENV} is required", file=sys.stderr)
        return 2

    try:
        config = get_active_config(args.config)
        init_engine_from_url(args.database_url)

        if args.command == "init-db":
            create_tables()
            _emit({"command": "init-db", "status": "ok"})
            return 0

        orchestrator = EscrowOrchestrator(get_session_factory(), config)

        if args.command == "sweep":
            result = orchestrator.run_release_sweep(args.as_of)
            _emit({"command": "sweep", **asdict(result)})
            return 0

        if args.command == "auto-match":
            report = orchestrator.run_auto_match(args.limit)
            _emit({
                "command": "auto-match",
                "matched": [str(m.incoming_id) for m in report.matched],
                "ambiguous": {str(k): v for k, v in report.ambiguous.items()},
                "unmatched": [str(i) for i in report.unmatched],
                "needs_review": [str(i) for i in report.needs_review],
            })
            return 0

        scheduler = build_scheduler(orchestrator, args.interval)
        signal.signal(signal.SIGTERM, lambda *_: scheduler.stop_event.set())
        try:
            scheduler.run_forever()
        except KeyboardInterrupt:
            scheduler.stop()
        return 0
    except EscrowKernelError as exc:
        logger.error("cli_failed", exc_info=True, extra={"command": args.command})
        print(f"error [{exc.code}]: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
