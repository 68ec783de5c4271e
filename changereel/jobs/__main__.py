"""Entry point for running the worker: python -m changereel.jobs"""

import asyncio
import sys

from changereel.core.logging import get_logger, setup_logging
from changereel.jobs.worker import run_worker


def main() -> int:
    setup_logging()
    logger = get_logger("changereel.worker")
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Fatal error in worker: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
