#!/usr/bin/env python3
"""
Recorder main entry point.

Allows the recorder to be run as a module: python3 -m recorder
"""

import asyncio
import logging
import os
import sys
import time

# Set default log level from environment, or INFO if not set
log_level = os.getenv("RECORDER_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

from recorder.config import load_config
from recorder.service import RecorderService

# Fatal startup errors exit after this delay
FATAL_EXIT_DELAY_SEC = 2.0


async def run(service: RecorderService) -> None:
    await service.start()
    try:
        await service.serve_forever()
    finally:
        await service.stop()


def main() -> int:
    try:
        config = load_config()
        logging.getLogger().setLevel(config.log_level.upper())
        asyncio.run(run(RecorderService(config)))
    except KeyboardInterrupt:
        logging.info("Recorder shutdown requested")
        return 0
    except Exception as e:
        logging.error(f"Failed to initialize recorder: {e}, exiting in 2 seconds...", exc_info=True)
        time.sleep(FATAL_EXIT_DELAY_SEC)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
