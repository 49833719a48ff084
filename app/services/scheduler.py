"""Scheduler service using APScheduler."""

import logging
from datetime import UTC, datetime

from apscheduler.jobstores.base import ConflictingIdError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

SWEEP_JOB_ID = "generation_sweep"


class SchedulerService:
    """Dispatches generations and periodically sweeps for lost ones.

    Dispatch is at-least-once: the same generation can be handed over by
    ``submit`` and again by the sweep. The generation service makes repeated
    runs no-ops.
    """

    def __init__(self, sweep_interval: int | None = None, grace_seconds: int | None = None) -> None:
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.sweep_interval = sweep_interval or settings.dispatch_sweep_interval
        self.grace_seconds = (
            grace_seconds if grace_seconds is not None else settings.dispatch_grace_seconds
        )

    async def start(self) -> None:
        """Start the scheduler, recover interrupted work and begin sweeping."""
        from app.services.generator import generation_service

        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

        generation_service.set_dispatcher(self.dispatch_generation)

        interrupted = await generation_service.cleanup_stale_generations()
        if interrupted:
            logger.info(f"Marked {interrupted} interrupted generations as failed")

        self.scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(seconds=self.sweep_interval),
            id=SWEEP_JOB_ID,
            name="Generation sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        # Pick up everything still pending from before the restart
        await self.sweep(grace_seconds=0)

    async def stop(self) -> None:
        """Stop the scheduler."""
        from app.services.generator import generation_service

        generation_service.set_dispatcher(None)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def dispatch_generation(self, image_id: int) -> bool:
        """Queue one run of the pipeline for a generation as soon as possible."""
        job_id = f"generation_{image_id}"
        if self.scheduler.get_job(job_id):
            logger.debug(f"Generation {image_id} already queued")
            return False

        try:
            self.scheduler.add_job(
                self._run_generation,
                trigger=DateTrigger(run_date=datetime.now(UTC)),
                id=job_id,
                name=f"Generate image {image_id}",
                args=[image_id],
                misfire_grace_time=None,
            )
        except ConflictingIdError:
            return False

        logger.info(f"Dispatched generation {image_id}")
        return True

    async def _run_generation(self, image_id: int) -> None:
        """Run a generation (called by scheduler)."""
        from app.services.generator import generation_service

        await generation_service.run_generation(image_id)

    async def sweep(self, grace_seconds: int | None = None) -> dict[str, int]:
        """Re-dispatch pending generations and fail stalled ones."""
        from app.services.generator import generation_service

        grace = self.grace_seconds if grace_seconds is None else grace_seconds
        dispatched = 0
        failed = 0
        try:
            for image_id in await generation_service.pending_generation_ids(grace):
                if self.dispatch_generation(image_id):
                    dispatched += 1
            failed = await generation_service.fail_stalled_generations()
        except Exception:
            logger.exception("Generation sweep failed")

        if dispatched:
            logger.info(f"Sweep re-dispatched {dispatched} pending generations")
        return {"dispatched": dispatched, "failed": failed}

    def get_all_jobs_info(self) -> list[dict]:
        """Get info about all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            })
        return jobs


# Global instance
scheduler_service = SchedulerService()
