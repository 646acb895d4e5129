"""Entry point for the terminal gateway WebSocket server."""

import argparse
import asyncio
import logging

from terminal_gateway.config import settings
from terminal_gateway.gateway import create_gateway

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)-5s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def main(host: str, port: int) -> None:
    gateway = create_gateway(settings)
    logger.info("Shell mode: %s", settings.shell_mode)
    await gateway.serve(host, port)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Lab Portal terminal gateway")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    args = parser.parse_args()

    asyncio.run(main(host=args.host, port=args.port))
