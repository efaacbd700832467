"""
Hub engines API entry point.

Run with:
    uvicorn hub_engines.main:app --reload
"""

# Load environment variables FIRST, before any module imports that need them
from dotenv import load_dotenv
load_dotenv()

import logging
import os

from .app_factory import create_app
from .logging_config import setup_logging

# Configure logging at module load time
setup_logging()

logger = logging.getLogger(__name__)

app = create_app(
    init_database=os.getenv("INIT_DB_ON_STARTUP", "true").lower() in ("1", "true", "yes"),
)


def run(host: str = "0.0.0.0", port: int = None, reload: bool = False) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    if port is None:
        port = int(os.getenv("PORT", "8000"))
    logger.info("Starting hub engines API on %s:%d", host, port)
    uvicorn.run("hub_engines.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
