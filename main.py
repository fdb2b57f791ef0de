"""
main.py — Single entry point.

Runs the identification HTTP service in one asyncio event loop:
  asyncio event loop
    └── aiohttp web server  (/identify, /identify/multi, /health, /status)
"""
import asyncio
import logging
import signal
import sys
from pathlib import Path

import config

# Log file lives in the same data/ directory as the cache database so that a
# single Docker volume mount (./data:/app/data) captures both.
_data_dir = Path(config.DATA_DIR)
_data_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(_data_dir / "service.log"), encoding="utf-8"),
    ],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def run() -> None:
    # ── Database bootstrap (must happen before the first request) ─────────────
    import database as _db
    if config.CACHE_BACKEND == "sqlite":
        try:
            await _db.init_db()
        except Exception as exc:
            logger.critical("FATAL: database init failed: %s", exc, exc_info=True)
            raise

    from pipeline import build_controller
    from server import start_server

    controller = build_controller()
    web_runner = await start_server(controller)

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    logger.info("✅ Service is running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    except (KeyboardInterrupt, SystemExit):
        pass

    logger.info("Shutting down…")
    await web_runner.cleanup()
    logger.info("Goodbye.")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
