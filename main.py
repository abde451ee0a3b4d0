"""
Marketplace referral engine - entry point for deployment.

Brings the schema up to date, then serves marketplace.main:app with uvicorn.
"""
import logging
import os

import uvicorn
from alembic import command
from alembic.config import Config

logger = logging.getLogger("marketplace.launcher")


def run_migrations() -> None:
    """Apply pending alembic migrations.

    A failure is logged and startup continues; the schema may already be current.
    """
    try:
        command.upgrade(Config("alembic.ini"), "head")
        logger.info("Migrations complete")
    except Exception:
        logger.exception("Migration failed")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    run_migrations()
    uvicorn.run(
        "marketplace.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8000)),
    )


if __name__ == "__main__":
    main()
