"""
dashlink entrypoint
Restores the stored session and reports backend circuit health.
"""

import asyncio
import sys

from loguru import logger

from dashlink.auth.service import AuthService
from dashlink.context import ClientContext
from dashlink.services import ResilientClient
from dashlink.settings import global_settings


def on_session_expired(reason: str) -> None:
    logger.warning(f"Session ended, sign in again ({reason})")


async def main() -> None:
    """Main function"""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)
    logger.info(f"Starting dashlink against {global_settings.api_url}...")

    async with ClientContext.create(global_settings) as context:
        context.events.subscribe(on_session_expired)
        client = ResilientClient(context)

        user = await AuthService(context).initialize()
        if user is None:
            logger.info("No active session")
        else:
            logger.info(f"Session restored for {user.username or user.user_id}")

        logger.info(f"Health: {client.get_health_status()}")

    logger.info("dashlink stopped")


if __name__ == "__main__":
    asyncio.run(main())
