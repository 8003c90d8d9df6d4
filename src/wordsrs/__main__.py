"""Maintenance entry point for the scheduling core."""
import argparse
import json
import logging
import sys
from typing import List, Optional

from wordsrs.config import settings
from wordsrs.exceptions import SrsError
from wordsrs.logging_config import setup_logging
from wordsrs.models.base import SessionLocal, init_db
from wordsrs.monitoring import start_monitoring
from wordsrs.services.recompute_service import RecomputeService
from wordsrs.services.transfer_service import TransferService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wordsrs", description="Spaced repetition maintenance tasks")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create database tables")

    recompute = commands.add_parser("recompute", help="Replay a user's review history")
    recompute.add_argument("user_id")
    recompute.add_argument("--page-size", type=int, default=None)

    export = commands.add_parser("export", help="Export a user's cards as JSON")
    export.add_argument("user_id")
    export.add_argument("--output", "-o", default=None, help="File to write instead of stdout")

    import_ = commands.add_parser("import", help="Import cards from a JSON export")
    import_.add_argument("user_id")
    import_.add_argument("file")
    import_.add_argument("--overwrite", action="store_true", help="Replace existing cards")

    return parser


def run(args: argparse.Namespace) -> int:
    """Run one command and return the process exit code."""
    init_db()
    if args.command == "init-db":
        logger.info("Database initialized")
        return 0

    db = SessionLocal()
    try:
        if args.command == "recompute":
            result = RecomputeService(db).recompute_settings(args.user_id, args.page_size)
            print(json.dumps({
                "processed": result.processed,
                "total": result.total,
                "failed_card_ids": result.failed_card_ids,
            }))
            return 1 if result.failed_card_ids else 0

        if args.command == "export":
            data = json.dumps(TransferService(db).export_cards(args.user_id), indent=2)
            if args.output:
                with open(args.output, "w", encoding="utf-8") as f:
                    f.write(data)
            else:
                print(data)
            return 0

        if args.command == "import":
            with open(args.file, encoding="utf-8") as f:
                payload = json.load(f)
            result = TransferService(db).import_cards(args.user_id, payload, args.overwrite)
            print(json.dumps({
                "cards_imported": result.cards_imported,
                "cards_updated": result.cards_updated,
                "cards_skipped": result.cards_skipped,
                "review_logs_imported": result.review_logs_imported,
                "validation_errors": result.validation_errors,
            }, indent=2))
            return 0
    finally:
        db.close()

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if settings.monitoring.enabled:
        start_monitoring(settings.monitoring.port)

    try:
        return run(args)
    except SrsError as e:
        logger.error(f"Command {args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
