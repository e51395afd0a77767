"""Server-side polling of generation jobs.

Two entry points:
- resume_poll: poll one job until it is terminal, as a FastAPI background
  task or from the CLI. Each attempt uses a fresh session so rows changed
  by other pollers are never read stale.
- sweep_stale_tasks: the watchdog. Jobs still in flight after
  ``stale_task_seconds`` are polled one last time; if the provider still
  has no answer they are expired and their scene is marked failed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyreel.config import settings
from storyreel.db import async_session
from storyreel.errors import ProviderError
from storyreel.orchestrator.state import ARTIFACT_KINDS
from storyreel.services import task_tracker
from storyreel.services.file_manager import FileManager
from storyreel.services.providers import GenerationProvider, get_provider, require_configured

logger = logging.getLogger(__name__)

# In-memory view of background polls, keyed by provider task id
POLL_STATUS: dict[str, dict] = {}

# Finished polls stay visible for this long, then are pruned
POLL_STATUS_RETENTION = timedelta(hours=1)


def prune_poll_status(now: Optional[datetime] = None) -> int:
    """Drop finished entries older than the retention window.

    Returns:
        Number of entries removed.
    """
    now = now or datetime.now(timezone.utc)
    stale = [
        task_id
        for task_id, entry in POLL_STATUS.items()
        if entry.get("finished_at") is not None
        and now - entry["finished_at"] > POLL_STATUS_RETENTION
    ]
    for task_id in stale:
        del POLL_STATUS[task_id]
    return len(stale)


async def resume_poll(
    task_id: str,
    *,
    kind: Optional[str] = None,
    session_factory: async_sessionmaker = async_session,
    provider: Optional[GenerationProvider] = None,
    file_manager: Optional[FileManager] = None,
    interval: Optional[float] = None,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> task_tracker.TerminalResult:
    """Poll a job until it finishes or the attempt budget runs out.

    A timeout leaves the scene ``processing``; the job stays resumable and
    the stale-task sweep eventually settles it.
    """
    interval = settings.pipeline.poll_interval if interval is None else interval
    max_attempts = max_attempts or settings.pipeline.poll_max_attempts

    async with session_factory() as session:
        kind, _ = await task_tracker.find_job(session, task_id, kind)
    provider = provider or get_provider(kind)

    prune_poll_status()
    POLL_STATUS[task_id] = {"kind": kind, "status": "processing", "attempts": 0}

    async def poll_once(job_id: str) -> task_tracker.FinalizeResult:
        POLL_STATUS[job_id]["attempts"] += 1
        async with session_factory() as session:
            return await task_tracker.finalize_if_ready(
                session, job_id, provider, file_manager, kind=kind
            )

    try:
        outcome = await task_tracker.poll_until_terminal(
            poll_once, task_id, interval, max_attempts, sleep=sleep
        )
    except Exception as e:
        logger.error("Background poll of %s task %s failed: %s", kind, task_id, e, exc_info=True)
        POLL_STATUS[task_id].update(
            status="error", error=str(e), finished_at=datetime.now(timezone.utc)
        )
        raise

    POLL_STATUS[task_id].update(
        status=outcome.status,
        timed_out=outcome.timed_out,
        finished_at=datetime.now(timezone.utc),
    )
    if outcome.timed_out:
        logger.warning("%s task %s: gave up after %d polls", kind, task_id, outcome.attempts)
    else:
        logger.info("%s task %s: %s after %d polls", kind, task_id, outcome.status, outcome.attempts)
    return outcome


@dataclass
class SweepResult:
    checked: int = 0
    finalized: int = 0
    expired: int = 0
    task_ids: list[str] = field(default_factory=list)


async def sweep_stale_tasks(
    session: AsyncSession,
    older_than_seconds: Optional[int] = None,
    *,
    providers: Optional[dict[str, GenerationProvider]] = None,
    file_manager: Optional[FileManager] = None,
) -> SweepResult:
    """Settle in-flight jobs older than the threshold.

    Every stale job is polled once first, so work the provider finished in
    the meantime is stored rather than lost.

    Args:
        session: Async database session
        older_than_seconds: Age threshold; defaults to
            ``pipeline.stale_task_seconds``
        providers: Optional provider per kind, for tests
        file_manager: Storage root for artifacts finalized by the sweep

    Returns:
        Counts of jobs checked, finalized and expired.
    """
    if older_than_seconds is None:
        older_than_seconds = settings.pipeline.stale_task_seconds
    # created_at is stored by the database as naive UTC
    cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=older_than_seconds)
    providers = providers or {}
    sweep = SweepResult()

    for kind in ARTIFACT_KINDS:
        jobs = await task_tracker.in_flight_jobs(session, kind, older_than=cutoff)
        if not jobs:
            continue
        provider = require_configured(providers.get(kind) or get_provider(kind))

        for artifact in jobs:
            sweep.checked += 1
            task_id = artifact.task_id
            try:
                result = await task_tracker.finalize_if_ready(
                    session, task_id, provider, file_manager, kind=kind
                )
            except ProviderError as e:
                logger.warning("Sweep: %s task %s could not be polled: %s", kind, task_id, e)
                result = None

            if result is not None and result.is_terminal:
                sweep.finalized += 1
                continue

            await task_tracker.expire_job(
                session,
                kind,
                artifact,
                f"Expired after {older_than_seconds}s without a result from the provider",
            )
            sweep.expired += 1
            sweep.task_ids.append(task_id)

    logger.info(
        "Sweep: %d stale job(s) checked, %d finalized, %d expired",
        sweep.checked, sweep.finalized, sweep.expired,
    )
    return sweep
