# background/payout_scheduler.py
"""
Payout Scheduler - periodic jobs around the phase engine.
Uses APScheduler; the engine itself never runs a loop.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import Config
from phase_engine.gateway.persistence import PersistenceGateway
from phase_engine.gateway.payment_rail import PaymentRail
from phase_engine.services.auto_payout_service import AutoPayoutScheduler
from phase_engine.services.phase_service import PhaseService
from phase_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class PayoutScheduler:
    """
    Background scheduler for auto-payout sweeps and monthly phase
    recalculation.
    """

    def __init__(self, paymentRail: PaymentRail, sessionFactory: Optional[Callable[[], Session]] = None):
        """
        Args:
            paymentRail: Rail used for disbursements
            sessionFactory: Callable returning a new Session, defaults to core.db.get_session
        """
        if sessionFactory is None:
            from core.db import get_session
            sessionFactory = get_session

        self.paymentRail = paymentRail
        self.sessionFactory = sessionFactory
        self.isRunning = False

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 300
            }
        )

        self.stats = {
            "sweeps": 0,
            "payoutsTriggered": 0,
            "payoutsFailed": 0,
            "phasesRecalculated": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastSweepAt": None,
        }

    async def start(self):
        """
        Start scheduler with all jobs.

        Jobs configured:
        - Auto payout sweep: every PAYOUT_CHECK_INTERVAL_MINUTES
        - Phase recalculation: 1st of month at 00:05 UTC (new reward period)
        """
        if self.isRunning:
            logger.warning("Payout Scheduler already running")
            return

        logger.info("=" * 60)
        logger.info("Starting Payout Scheduler with APScheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        interval = Config.get(Config.PAYOUT_CHECK_INTERVAL_MINUTES, 60)

        # ═══════════════════════════════════════════════════════════════
        # JOB 1: Auto payout sweep
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_payout_sweep_wrapper,
            trigger=IntervalTrigger(minutes=interval),
            id='auto_payout_sweep',
            name='Auto Payout Sweep',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Auto Payout Sweep (every {interval} minutes)")

        # ═══════════════════════════════════════════════════════════════
        # JOB 2: Monthly phase recalculation
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_monthly_phase_wrapper,
            trigger=CronTrigger(day=1, hour=0, minute=5),
            id='monthly_phases',
            name='Monthly Phase Recalculation',
            replace_existing=True
        )
        logger.info("✓ Job registered: Monthly Phase Recalculation (1st, 00:05 UTC)")

        self.scheduler.start()

        logger.info(f"✅ Payout Scheduler started, active jobs: {len(self.scheduler.get_jobs())}")

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping Payout Scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ Payout Scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPERS (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_payout_sweep_wrapper(self):
        try:
            await self.runPayoutSweep()
        except Exception as e:
            logger.error(f"Error in auto payout sweep: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def _safe_monthly_phase_wrapper(self):
        try:
            await self.runMonthlyPhaseRecalculation()
        except Exception as e:
            logger.error(f"Error in monthly phase recalculation: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    # ═══════════════════════════════════════════════════════════════════
    # JOBS
    # ═══════════════════════════════════════════════════════════════════

    async def runPayoutSweep(self) -> dict:
        """
        Evaluate auto payout for every member in automatic mode.

        Returns:
            Dict with evaluated / triggered / failed counts
        """
        session = self.sessionFactory()
        triggered = failed = evaluated = 0

        try:
            gateway = PersistenceGateway(session)
            autoPayout = AutoPayoutScheduler(
                gateway,
                self.paymentRail,
                defaultTimeout=Config.get(Config.PAYMENT_RAIL_TIMEOUT, 30)
            )

            for memberId in gateway.getAutomaticPayoutMemberIds():
                evaluated += 1
                try:
                    evaluation = await autoPayout.evaluate(memberId)
                except Exception as e:
                    logger.error(f"Error evaluating payout for member {memberId}: {e}", exc_info=True)
                    session.rollback()
                    failed += 1
                    self.stats["errors"] += 1
                    self.stats["lastError"] = str(e)
                    continue

                if evaluation.triggered:
                    triggered += 1
                elif not evaluation.success:
                    failed += 1

        finally:
            session.close()

        self.stats["sweeps"] += 1
        self.stats["payoutsTriggered"] += triggered
        self.stats["payoutsFailed"] += failed
        self.stats["lastSweepAt"] = timeMachine.now

        if triggered or failed:
            logger.info(f"Payout sweep: {evaluated} evaluated, {triggered} paid, {failed} failed")

        return {"evaluated": evaluated, "triggered": triggered, "failed": failed}

    async def runMonthlyPhaseRecalculation(self) -> int:
        """
        Recalculate every subscribed member so rewards for the new period
        are granted.

        Returns:
            Number of members recalculated
        """
        logger.info(f"Recalculating phases for period {timeMachine.currentMonth}")

        session = self.sessionFactory()
        processed = 0

        try:
            gateway = PersistenceGateway(session)
            phaseService = PhaseService(gateway)

            for memberId in gateway.getSubscribedMemberIds():
                try:
                    await phaseService.recalculatePhase(memberId)
                    processed += 1
                except Exception as e:
                    logger.error(f"Error recalculating phase for member {memberId}: {e}", exc_info=True)
                    session.rollback()
                    self.stats["errors"] += 1

        finally:
            session.close()

        self.stats["phasesRecalculated"] += processed
        logger.info(f"✓ Recalculated phases for {processed} members")
        return processed

    def getStatus(self) -> dict:
        jobs_info = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None
                })

        return {
            "isRunning": self.isRunning,
            "currentTime": timeMachine.now.isoformat(),
            "isTestMode": timeMachine.isTestMode,
            "stats": self.stats,
            "jobs": jobs_info
        }
