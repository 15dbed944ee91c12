import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from core.config import settings
from core.database import async_session_maker
from core.exceptions import ETLException
from ingestion.runner import build_runners, run_all

logger = logging.getLogger(__name__)


class ETLScheduler:
    def __init__(self, session_factory: async_sessionmaker = None, interval_hours: int = None):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory or async_session_maker
        self.interval_hours = interval_hours or settings.SCHEDULE_INTERVAL_HOURS

    async def run_etl_job(self):
        """Job to run every configured ingestion pipeline"""
        logger.info("Scheduler: Starting ETL job")
        try:
            runners = build_runners(session_factory=self.session_factory)
            results = await run_all(runners)
            for result in results:
                logger.info(
                    f"Scheduler: {result['dataset_kind']} finished "
                    f"({result['records_loaded']} records loaded)"
                )
        except ETLException as e:
            logger.error(f"Scheduler: ETL job failed - {e.message}", extra={"error_context": e.to_dict()})
        except Exception as e:
            logger.error(f"Scheduler: ETL job failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_etl_job,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id="etl_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"ETL Scheduler started (every {self.interval_hours}h)")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("ETL Scheduler stopped")
