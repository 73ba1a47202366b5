"""
Reminder Flow API entry point
"""
import logging

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from reminder_flows.config import Settings

settings = Settings.from_env()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from reminder_flows.api import app


if __name__ == "__main__":
    if settings.api_reload:
        uvicorn.run(
            "reminder_flows.api:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=True,
            log_level="info"
        )
    else:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level="info"
        )
