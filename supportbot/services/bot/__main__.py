"""Entry point for: python3 -m supportbot.services.bot"""
import asyncio
import sys

from supportbot.config import ConfigError
from supportbot.common.logging import setup_logging
from supportbot.services.bot.service import SupportBotService


def main():
    logger = setup_logging("bot")
    try:
        service = SupportBotService()
        asyncio.run(service.run())
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
