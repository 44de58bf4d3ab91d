import logging

import uvicorn

from autopilot.app import create_app
from autopilot.config import Settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def main() -> None:
    """Run autopilot with uvicorn."""
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
