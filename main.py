"""
Operations Simulation Backend
Entry point for the FastAPI application
"""

import uvicorn
from opsim.api import app
from opsim.utils.logging_config import get_logger
from opsim.config import get_settings

# Logging is configured when opsim.api is imported
settings = get_settings()

logger = get_logger(__name__)

if __name__ == "__main__":
    logger.info("Starting Operations Simulation Backend")
    logger.info(
        f"Environment: {settings.env}, "
        f"Log level: {settings.log_level}, "
        f"Format: {'JSON' if settings.log_format_json else 'Human-readable'}, "
        f"Simulation folder: {settings.simulation_folder}"
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
