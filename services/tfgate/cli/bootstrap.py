"""
Bootstrap script for creating the initial admin user.

Idempotent: skips if resources already exist.
Run via: python -m tfgate.cli.bootstrap [--print-secret]

Reads configuration from environment variables:
  TFGATE_BOOTSTRAP_ADMIN_USERNAME - Admin username (required)
  TFGATE_DATABASE_URL             - PostgreSQL connection URL

--print-secret prints a freshly generated server secret for TFGATE_SECRET
and exits without touching the database.
"""

import argparse
import asyncio
import logging
import os
import sys

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from tfgate.auth.builtin_roles import ADMIN_ROLE
from tfgate.auth.server_secret import generate_secret
from tfgate.db.models import RoleAssignment, User

# Use stdlib logging; structlog isn't configured yet during bootstrap
logger = logging.getLogger("tfgate.bootstrap")
logging.basicConfig(level=logging.INFO, format="%(message)s")


async def bootstrap(admin_username: str, database_url: str) -> None:
    # Ensure async driver
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("Connected to database")

    async with AsyncSession(engine, expire_on_commit=False) as session:
        async with session.begin():
            if await session.get(User, admin_username):
                logger.info("User %s already exists, skipping user creation", admin_username)
            else:
                session.add(User(username=admin_username, display_name="Admin", is_active=True))
                logger.info("Created user: %s", admin_username)

            result = await session.execute(
                select(RoleAssignment).where(
                    RoleAssignment.username == admin_username,
                    RoleAssignment.role_name == ADMIN_ROLE,
                )
            )
            if result.scalar_one_or_none():
                logger.info("Admin role already assigned to %s, skipping", admin_username)
            else:
                session.add(RoleAssignment(username=admin_username, role_name=ADMIN_ROLE))
                logger.info("Assigned admin role to %s", admin_username)

    await engine.dispose()
    logger.info("Bootstrap complete")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tfgate-bootstrap")
    parser.add_argument(
        "--print-secret",
        action="store_true",
        help="Print a new server secret for TFGATE_SECRET and exit",
    )
    args = parser.parse_args(argv)

    if args.print_secret:
        print(generate_secret())
        return 0

    admin_username = os.environ.get("TFGATE_BOOTSTRAP_ADMIN_USERNAME", "").strip()
    database_url = os.environ.get("TFGATE_DATABASE_URL", "").strip()

    if not admin_username:
        logger.error("TFGATE_BOOTSTRAP_ADMIN_USERNAME is required")
        return 1
    if not database_url:
        logger.error("TFGATE_DATABASE_URL is required")
        return 1

    if not os.environ.get("TFGATE_SECRET"):
        logger.warning(
            "TFGATE_SECRET is not set; authorization codes and upload URLs will not "
            "survive restarts. Generate one with --print-secret."
        )

    asyncio.run(bootstrap(admin_username, database_url))
    return 0


if __name__ == "__main__":
    sys.exit(main())
