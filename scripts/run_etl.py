"""
Script to run the bulk ingestion pipeline for every configured kind.

Driven entirely by environment variables (see core/config.py). Exits 0 on
success and 1 on any fatal error or on SIGINT/SIGTERM, after the last
checkpoint has been flushed.
"""

import asyncio
import signal
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import engine
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.runner import build_runners, run_all

logger = logging.getLogger(__name__)


async def run_etl() -> int:
    """Run every pipeline; returns the process exit code"""
    runners = build_runners()
    logger.info(f"Running ingestion for: {', '.join(r.kind for r in runners)}")

    task = asyncio.ensure_future(run_all(runners))
    interrupted = []

    def on_signal(signame: str):
        logger.warning(f"Received {signame}; flushing checkpoints and stopping")
        interrupted.append(signame)
        for runner in runners:
            runner.flush_checkpoint()
        task.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, on_signal, sig.name)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        results = await task
        for result in results:
            logger.info(
                f"Ingestion completed for {result['dataset_kind']}: "
                f"status={result['status']}, phase={result['phase']}, "
                f"loaded={result['records_loaded']}"
            )
        logger.info("All ingestion jobs completed")
        return 0

    except asyncio.CancelledError:
        logger.error(f"Ingestion interrupted ({', '.join(interrupted) or 'cancelled'}); checkpoint saved")
        return 1

    except ETLException as e:
        logger.error(f"Ingestion failed: {e}", extra={"error_context": e.to_dict()})
        return 1

    except Exception as e:
        logger.exception(f"Ingestion pipeline error: {str(e)}")
        return 1

    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    sys.exit(asyncio.run(run_etl()))
