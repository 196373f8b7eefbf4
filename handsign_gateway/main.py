#!/usr/bin/env python3
"""
Gesture Gateway - Main Entry Point

Serves the gesture session to one controlling client:
- Hosts the selected model (prediction, capture, curation, training)
- Persists models as JSON snapshots in a directory
- Enforces single-controller lock

Environment Variables:
    HANDSIGN_TOKEN: Required authentication token
    HANDSIGN_HOST: Bind address (default: 0.0.0.0)
    HANDSIGN_PORT: Port (default: 8080)
    HANDSIGN_MODEL_DIR: Snapshot directory (default: models)
    HANDSIGN_DEFAULT_FRAMES: Sample length for models created over HTTP without one (default: 10)
    HANDSIGN_COUNTDOWN: Capture countdown start (default: 3)
    HANDSIGN_CAPTURE_SECONDS: Capture duration in seconds (default: 5.0)
    HANDSIGN_SAMPLE_MS: Capture sampling interval in milliseconds (default: 100)

Usage:
    export HANDSIGN_TOKEN=mysecrettoken
    python -m handsign_gateway.main
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import uvicorn

from handsign.capture import CaptureConfig
from handsign.store import ModelStore
from .ws_server import GatewayServer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class Gateway:
    """
    Gesture gateway wiring the model store to the WebSocket server.

    Architecture:
        Client -> WebSocket -> GatewayServer -> GestureSession -> ModelStore
    """

    def __init__(
        self,
        token: str,
        host: str = "0.0.0.0",
        port: int = 8080,
        model_dir: str = "models",
        default_frames: int = 10,
        capture_config: Optional[CaptureConfig] = None,
    ):
        """
        Initialize gateway.

        Args:
            token: Authentication token for clients
            host: Server bind address
            port: Server port
            model_dir: Directory holding model snapshots
            default_frames: Sample length for models created without one
            capture_config: Capture timings
        """
        self.token = token
        self.host = host
        self.port = port
        self.model_dir = model_dir
        self.default_frames = default_frames
        self.capture_config = capture_config or CaptureConfig()

        self.store = ModelStore(model_dir)
        self.server: Optional[GatewayServer] = None

    async def start(self) -> None:
        """Create the server and report the stored models."""
        logger.info("Starting Gesture Gateway...")

        self.server = GatewayServer(
            token=self.token,
            store=self.store,
            capture_config=self.capture_config,
            default_frames=self.default_frames,
        )

        names = await self.store.list_names()
        logger.info(f"Model directory {self.model_dir!r} holds {len(names)} model(s)")
        logger.info(f"Gesture Gateway started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Abort any capture and wait for pending saves."""
        logger.info("Stopping Gesture Gateway...")
        if self.server and self.server.session:
            self.server.session.close()
            await self.server.session.flush()
        logger.info("Gesture Gateway stopped")

    def get_app(self):
        """Get the FastAPI application for uvicorn."""
        return self.server.app

    def get_stats(self) -> dict:
        return self.server.get_stats() if self.server else {}


async def run_server(gateway: Gateway) -> None:
    """Run the server with uvicorn."""
    config = uvicorn.Config(
        gateway.get_app(),
        host=gateway.host,
        port=gateway.port,
        log_level="info",
        access_log=True,
    )
    server = uvicorn.Server(config)
    await server.serve()


def load_capture_config() -> CaptureConfig:
    """Read capture timings from the environment."""
    return CaptureConfig(
        countdown_from=int(os.environ.get("HANDSIGN_COUNTDOWN", "3")),
        capture_duration=float(os.environ.get("HANDSIGN_CAPTURE_SECONDS", "5.0")),
        sample_interval=int(os.environ.get("HANDSIGN_SAMPLE_MS", "100")) / 1000.0,
    )


async def main_async() -> None:
    """Async main entry point."""
    token = os.environ.get("HANDSIGN_TOKEN")
    if not token:
        logger.error("HANDSIGN_TOKEN environment variable is required")
        sys.exit(1)

    try:
        gateway = Gateway(
            token=token,
            host=os.environ.get("HANDSIGN_HOST", "0.0.0.0"),
            port=int(os.environ.get("HANDSIGN_PORT", "8080")),
            model_dir=os.environ.get("HANDSIGN_MODEL_DIR", "models"),
            default_frames=int(os.environ.get("HANDSIGN_DEFAULT_FRAMES", "10")),
            capture_config=load_capture_config(),
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await gateway.start()

        server_task = asyncio.create_task(run_server(gateway))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"Server error: {e}")
    finally:
        await gateway.stop()


def main() -> None:
    """Main entry point."""
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
