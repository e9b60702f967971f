"""
HSSE - Background sweeps

One APScheduler BackgroundScheduler runs every periodic status sweep. Sweeps
are plain functions from the domain models; each returns the number of rows
it touched.
"""
import logging
from typing import Callable, Dict, List

from apscheduler.schedulers.background import BackgroundScheduler

from hsse.audits import mark_overdue_audits
from hsse.config import AppConfig, is_test_mode
from hsse.hazards import mark_overdue_actions
from hsse.hazards.models import list_overdue_assessments
from hsse.health import expire_vaccinations
from hsse.incidents.models import mark_overdue_corrective_actions
from hsse.inspections import mark_overdue_inspections
from hsse.licenses import expire_licenses
from hsse.ppe import expire_overdue_items
from hsse.waste import expire_provider_licenses

logger = logging.getLogger(__name__)

_scheduler = None


def _overdue_risk_reviews() -> int:
    overdue = list_overdue_assessments()
    if overdue:
        logger.warning("[Scheduler] %d risk assessments are past their review date: %s", len(overdue),
                       ", ".join(a["hazard_number"] or str(a["hazard_id"]) for a in overdue[:10]))
    return len(overdue)


# job id: sweep
HOURLY_SWEEPS: Dict[str, Callable[[], int]] = {
    "overdue_mitigation_actions": mark_overdue_actions,
    "overdue_corrective_actions": mark_overdue_corrective_actions,
    "expired_licenses": expire_licenses,
    "expired_ppe": expire_overdue_items,
    "expired_provider_licenses": expire_provider_licenses,
    "overdue_audits": mark_overdue_audits,
    "overdue_inspections": mark_overdue_inspections,
}

DAILY_SWEEPS: Dict[str, Callable[[], int]] = {
    "expired_vaccinations": expire_vaccinations,
    "overdue_risk_reviews": _overdue_risk_reviews,
}


def run_sweep(name: str, sweep: Callable[[], int]) -> int:
    """Run one sweep; failures are logged so the next run still happens."""
    try:
        count = sweep()
    except Exception as e:
        logger.error("[Scheduler] Sweep %s failed: %s", name, e)
        return 0
    if count:
        logger.info("[Scheduler] %s: %d rows updated", name, count)
    return count


def run_all_sweeps() -> Dict[str, int]:
    return {name: run_sweep(name, sweep) for name, sweep in {**HOURLY_SWEEPS, **DAILY_SWEEPS}.items()}


def get_scheduler() -> BackgroundScheduler:
    """Get or create the singleton sweep scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120}
        )
    return _scheduler


def start_scheduler() -> bool:
    if is_test_mode():
        logger.info("[Scheduler] Test mode, background sweeps disabled")
        return False
    if not AppConfig.get("scheduler_enabled", True):
        logger.info("[Scheduler] Disabled by application settings")
        return False

    scheduler = get_scheduler()
    if scheduler.running:
        return True

    interval = max(5, int(AppConfig.get("sweep_interval_minutes", 60)))
    for name, sweep in HOURLY_SWEEPS.items():
        scheduler.add_job(run_sweep, "interval", minutes=interval, args=[name, sweep],
                          id=f"sweep_{name}", replace_existing=True)

    # Daily sweeps run shortly after midnight
    for name, sweep in DAILY_SWEEPS.items():
        scheduler.add_job(run_sweep, "cron", hour=0, minute=15, args=[name, sweep],
                          id=f"sweep_{name}", replace_existing=True)

    scheduler.start()
    logger.info("[Scheduler] Started with %d hourly and %d daily sweeps", len(HOURLY_SWEEPS), len(DAILY_SWEEPS))
    return True


def stop_scheduler():
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("[Scheduler] Stopped")


def get_status() -> Dict:
    scheduler = _scheduler
    jobs: List[Dict] = []
    if scheduler is not None:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            })
    return {"running": bool(scheduler and scheduler.running), "jobs": jobs}
