# mlm_ledger/scheduler.py
"""
Payout scheduler - fires distributor jobs at their daily or weekly slot.

Each run is recorded in JobRun under (job, period), so a job runs once per
period even across restarts. A failed run is retried on the next check, and
so is a run left in "running" by a crashed worker once it is older than
JOB_STALE_AFTER.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

import config
from models import JobRun
from models.job_run import JOB_RUNNING, JOB_FINISHED, JOB_FAILED
from mlm_ledger.events.event_bus import eventBus, EventBus
from mlm_ledger.services.capping_service import CappingService
from mlm_ledger.services.growth_booster_service import GrowthBoosterService
from mlm_ledger.services.level_service import DailyLevelService
from mlm_ledger.services.reward_service import RewardService
from mlm_ledger.services.roi_service import RoiService
from mlm_ledger.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)

JobCallable = Callable[[], Awaitable[Dict]]


def buildJobs(sessionFactory, bus: EventBus = None) -> Dict[str, JobCallable]:
    """Job name -> coroutine function, names as in config.PAYOUT_SCHEDULE."""
    bus = bus or eventBus

    async def cappingJob(method: str) -> Dict:
        with sessionFactory() as session:
            return await getattr(CappingService(session), method)()

    return {
        "roi": RoiService(sessionFactory, bus).runROI,
        "growth_booster": GrowthBoosterService(sessionFactory, bus).runGrowthBooster,
        "daily_level": DailyLevelService(sessionFactory, bus).runDailyLevel,
        "reward": RewardService(sessionFactory, bus).runReward,
        "order_payout_status": lambda: cappingJob("updateOrderPayoutStatus"),
        "user_status": lambda: cappingJob("updateUserStatus"),
    }


class PayoutScheduler:

    def __init__(self, jobs: Dict[str, JobCallable], sessionFactory,
                 schedule: Dict = None, checkInterval: int = None,
                 staleAfter: int = None):
        self.jobs = jobs
        self.sessionFactory = sessionFactory
        self.schedule = schedule or config.PAYOUT_SCHEDULE
        self.checkInterval = checkInterval or config.SCHEDULER_CHECK_INTERVAL
        self.staleAfter = staleAfter if staleAfter is not None else config.JOB_STALE_AFTER
        self._running = False

    def periodKey(self, jobName: str, now: datetime = None) -> str:
        now = now or timeMachine.now
        _, _, weekday = self.schedule[jobName]
        if weekday is not None:
            year, week, _ = now.isocalendar()
            return f"{year}-W{week:02d}"
        return now.strftime('%Y-%m-%d')

    def isDue(self, jobName: str, now: datetime = None) -> bool:
        """Slot time of today has passed (and today is the job's weekday, for weekly jobs)."""
        now = now or timeMachine.now
        hour, minute, weekday = self.schedule[jobName]
        if weekday is not None and now.weekday() != weekday:
            return False
        return (now.hour, now.minute) >= (hour, minute)

    async def runJob(self, jobName: str, force: bool = False) -> Optional[Dict]:
        """
        Run job for the current period. Returns the job summary, or None when
        this period already ran (unless force).
        """
        if jobName not in self.jobs:
            raise ValueError(f"Unknown job '{jobName}'")

        periodKey = self.periodKey(jobName)
        if not self._claim(jobName, periodKey, force):
            logger.debug(f"Job {jobName} already ran for {periodKey}")
            return None

        logger.info(f"Job {jobName} started for {periodKey}")
        try:
            result = await self.jobs[jobName]()
        except Exception as e:
            logger.error(f"Job {jobName} for {periodKey} failed: {e}", exc_info=True)
            self._finish(jobName, periodKey, JOB_FAILED, {"error": str(e)})
            return {"success": False, "error": str(e)}

        summary = {k: v for k, v in (result or {}).items() if k != "payouts"}
        self._finish(jobName, periodKey, JOB_FINISHED, summary)
        logger.info(f"Job {jobName} finished for {periodKey}: {summary}")
        return result

    async def tick(self):
        now = timeMachine.now
        for jobName in self.schedule:
            if jobName in self.jobs and self.isDue(jobName, now):
                await self.runJob(jobName)

    async def run(self):
        """Scheduler main loop."""
        logger.info("Payout scheduler started")
        self._running = True

        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in payout scheduler loop: {e}")
            await asyncio.sleep(self.checkInterval)

    async def stop(self):
        self._running = False
        logger.info("Payout scheduler stopped")

    def _claim(self, jobName: str, periodKey: str, force: bool) -> bool:
        """
        Insert or take over the JobRun row. False if it is finished, or running
        and not yet stale. A running row older than staleAfter is left over
        from a crashed worker and is taken over like a failed one.
        """
        now = datetime.now(timezone.utc)
        with self.sessionFactory() as session:
            run = session.query(JobRun).filter_by(jobName=jobName, periodKey=periodKey).first()
            if run:
                if not force and not self._isReclaimable(run, now):
                    return False
                if run.status == JOB_RUNNING:
                    logger.warning(f"Job {jobName} for {periodKey} stuck since {run.startedAt}, reclaiming")

                # Conditional update: only one worker wins the takeover
                claimed = session.query(JobRun).filter(
                    JobRun.jobRunID == run.jobRunID,
                    JobRun.status == run.status,
                    JobRun.startedAt == run.startedAt
                ).update({
                    JobRun.status: JOB_RUNNING,
                    JobRun.startedAt: now,
                    JobRun.finishedAt: None
                }, synchronize_session=False)
                session.commit()
                return claimed == 1

            session.add(JobRun(
                jobName=jobName,
                periodKey=periodKey,
                status=JOB_RUNNING,
                startedAt=now
            ))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def _isReclaimable(self, run: JobRun, now: datetime) -> bool:
        if run.status == JOB_FAILED:
            return True
        if run.status != JOB_RUNNING:
            return False
        if run.startedAt is None:
            return True
        startedAt = run.startedAt
        if startedAt.tzinfo is None:
            startedAt = startedAt.replace(tzinfo=timezone.utc)
        return now - startedAt > timedelta(seconds=self.staleAfter)

    def _finish(self, jobName: str, periodKey: str, status: str, summary: Dict):
        with self.sessionFactory() as session:
            run = session.query(JobRun).filter_by(jobName=jobName, periodKey=periodKey).first()
            run.status = status
            run.summary = summary
            run.finishedAt = datetime.now(timezone.utc)
            session.commit()
