import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import session_scope
from reporting import ReportService


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        self.settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            service = ReportService(session)
            report = service.generate_monthly_income_statement()
            logger.info(
                f"scheduler_run: source={source} report_id={report.id} "
                f"period={report.start_date}to{report.end_date}"
            )

    def start(self) -> None:
        if not self.settings.auto_reports_enabled:
            logger.info("Scheduler disabled (FINANCE_AUTO_REPORTS=0)")
            return

        trigger = CronTrigger(day=1, hour=1, minute=30)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["monthly_01:30"],
            id="monthly_income_statement",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info("Scheduler started with monthly income statement on day 1 at 01:30")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
