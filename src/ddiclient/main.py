"""FastAPI application running the DDI client."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
import uvicorn

from ddiclient.api.routes import router
from ddiclient.client import DDIClient
from ddiclient.config import ClientConfig
from ddiclient.utils.logging import setup_logger

STATUS_PORT = 12316


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Load configuration (ConfigurationError aborts startup)
    - Initialize logger
    - Create download/install/backup directories
    - Start the poll loop as a background task

    Shutdown:
    - Signal the poll loop, wait for it, close the HTTP client
    """
    config = ClientConfig.from_env()
    logger = setup_logger(
        "ddiclient",
        config.log_file,
        level=logging.getLevelName(config.log_level.upper()),
    )
    logger.info(f"DDI client starting up for controller {config.controller_id}...")

    for directory in (config.download_dir, config.install_dir, config.backup_dir):
        Path(directory).mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {directory}")

    client = DDIClient(config)
    shutdown = asyncio.Event()
    poll_task = asyncio.create_task(client.run(shutdown), name="ddi-poll-loop")
    app.state.client = client

    logger.info(f"DDI client ready, status API on port {STATUS_PORT}")

    yield

    logger.info("DDI client shutting down...")
    shutdown.set()
    await poll_task
    await client.aclose()


# Create FastAPI application
app = FastAPI(
    title="DDI Update Client",
    description="Device-side client for hawkBit Direct Device Integration",
    version="1.0.0",
    lifespan=lifespan,
)

# Register API routes
app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "ddiclient", "version": "1.0.0"}


def main():
    """Main entry point for running the client with its status API."""
    uvicorn.run(
        app,
        host="127.0.0.1",
        port=STATUS_PORT,
        log_level="info",
        access_log=False,
    )


if __name__ == "__main__":
    main()
