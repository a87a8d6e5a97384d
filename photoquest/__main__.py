"""
photoquest.__main__ — Entry point for ``python -m photoquest``
==============================================================

Commands:

``init-db``
    Create tables (dev) and seed default settings, achievements and tags.
``serve``
    Run the API under uvicorn.
``settle-pending``
    Settle rewards for completed, approved attempts whose settlement never
    finished (crash, exhausted background retries), then delete artifacts
    of reviewer-rejected submissions whose delete failed.

Run with::

    uv run python -m photoquest serve
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("photoquest")


def _init_db() -> None:
    from photoquest.database.engine import create_db_engine, init_db

    init_db(create_db_engine())
    logger.info("Database initialised")


def _serve(port: int | None) -> None:
    import uvicorn

    from photoquest.config import load_config

    cfg = load_config()
    logger.info("Starting %s API…", cfg.app_name)
    uvicorn.run("photoquest.api.main:app", host="0.0.0.0", port=port or cfg.api_port)


async def _settle_pending(limit: int) -> tuple[int, int]:
    from photoquest.api.deps import get_classifier, get_state_machine
    from photoquest.services.review_service import ModerationReviewer

    machine = get_state_machine()
    try:
        settled = await machine.retry_unsettled(limit)
        purged = await ModerationReviewer(machine).purge_rejected_artifacts(limit)
        return settled, purged
    finally:
        await machine.aclose()
        classifier = get_classifier()
        if classifier is not None:
            await classifier.aclose()


def main(argv: list[str] | None = None) -> None:
    """Bootstrap and dispatch a command."""
    load_dotenv()

    parser = argparse.ArgumentParser(prog="photoquest")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create tables and seed defaults")
    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--port", type=int, default=None)
    settle = sub.add_parser("settle-pending", help="settle unsettled rewards and purge rejected artifacts")
    settle.add_argument("--limit", type=int, default=100)
    args = parser.parse_args(argv)

    try:
        if args.command == "init-db":
            _init_db()
        elif args.command == "serve":
            _serve(args.port)
        else:
            settled, purged = asyncio.run(_settle_pending(args.limit))
            logger.info("Settled %d attempt(s), deleted %d rejected artifact(s)", settled, purged)
    except (RuntimeError, FileNotFoundError) as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
