"""Admin seed script for the EduSettle API.

Admins cannot self-register, so this creates the first one from settings.
It is idempotent and safe to run on every container start.
"""

import asyncio
import logging
from sqlalchemy import select

from app.database import AsyncSessionLocal
from app.models.user import User, ROLE_ADMIN
from app.auth.security import hash_password
from app.config import settings

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def seed_admin(session_factory=AsyncSessionLocal) -> bool:
    """Create the default admin user if it doesn't exist. Returns True if one was created."""
    if not settings.ADMIN_PASSWORD:
        logger.warning("ADMIN_PASSWORD is not set, skipping admin seed")
        return False

    async with session_factory() as session:
        result = await session.execute(
            select(User).where(User.email == settings.ADMIN_EMAIL)
        )
        if result.scalar_one_or_none():
            logger.info("Admin user already exists, skipping")
            return False

        admin_user = User(
            name=settings.ADMIN_NAME,
            email=settings.ADMIN_EMAIL,
            password_hash=hash_password(settings.ADMIN_PASSWORD),
            user_role=ROLE_ADMIN,
            status="active",
        )
        session.add(admin_user)
        await session.commit()

    logger.info(f"Admin user created: {settings.ADMIN_EMAIL}")
    return True


def main():
    """Entry point for the seed script."""
    asyncio.run(seed_admin())


if __name__ == "__main__":
    main()
