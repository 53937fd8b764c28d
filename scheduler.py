import logging

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from progression import ProgressionResult
from services import ProgressionService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# (job id, source label, misfire grace seconds)
PROGRESSION_JOBS = (
    ("progression_daily", "daily_00:05", 3600),
    ("progression_hourly_safety", "hourly_safety_net", 300),
)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.triggers = {
            # Shortly after local midnight so a new month is picked up on day 1.
            "progression_daily": CronTrigger(
                hour=0, minute=5, timezone=settings.timezone
            ),
            "progression_hourly_safety": IntervalTrigger(
                hours=1, timezone=settings.timezone
            ),
        }
        self.scheduler = BackgroundScheduler(
            timezone=settings.timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    def run_progression(self, source: str = "manual") -> ProgressionResult:
        logger.info(f"progression_check: source={source}")
        with session_scope() as session:
            result = ProgressionService(session).run()
        if result.success:
            logger.info(
                f"progression_check: source={source} outcome={result.outcome.value} "
                f"progressed_cards={result.progressed_cards} "
                f"cleaned_statements={result.cleaned_statements}"
            )
            if result.cleanup_error:
                logger.warning(
                    f"progression_check: source={source} {result.cleanup_error}"
                )
        else:
            # The checkpoint was withheld; the next run retries.
            logger.error(
                f"progression_check: source={source} failed "
                f"cards={','.join(result.failed_cards) or '-'} error={result.error}"
            )
        return result

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            f"progression_check: job={event.job_id} raised {event.exception!r}",
            exc_info=(
                type(event.exception),
                event.exception,
                event.exception.__traceback__,
            ),
        )

    def start(self) -> None:
        self.run_progression("startup")
        for job_id, source, grace in PROGRESSION_JOBS:
            self.scheduler.add_job(
                self.run_progression,
                self.triggers[job_id],
                args=[source],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=grace,
            )
        self.scheduler.start()
        logger.info(
            f"Scheduler started with jobs={','.join(job[0] for job in PROGRESSION_JOBS)}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
