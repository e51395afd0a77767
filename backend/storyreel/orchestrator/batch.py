"""Sequential batch execution over a project's scenes.

Scenes are processed one at a time to stay under provider rate limits.
Each scene is isolated: an exception is recorded in that scene's result and
the batch moves on to the next scene.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.db.models import Scene

logger = logging.getLogger(__name__)


@dataclass
class UnitResult:
    unit_id: uuid.UUID
    order_index: int
    success: bool
    task_id: Optional[str] = None
    artifact_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    results: list[UnitResult] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_eligible(self) -> int:
        return len(self.results)


# An action starts one scene's job and returns (task_id, artifact_id)
SceneAction = Callable[[Scene], Awaitable[tuple[Optional[str], Optional[uuid.UUID]]]]


async def run_batch(
    scenes: Sequence[Scene],
    action: SceneAction,
    label: str = "batch",
    session: Optional[AsyncSession] = None,
) -> BatchResult:
    """Run ``action`` for each scene in order, isolating failures.

    Args:
        scenes: Eligible scenes, already filtered and sorted by order_index.
        action: Coroutine function starting the job for one scene.
        label: Name used in log lines.
        session: Session the scenes belong to. When given, each scene is
            reloaded before its action runs.

    Returns:
        BatchResult with one entry per scene.
    """
    batch = BatchResult()

    # Identifiers are read before any action runs; later rows may be expired
    units = [(scene, scene.id, scene.order_index) for scene in scenes]

    for scene, scene_id, order_index in units:
        try:
            if session is not None:
                await session.refresh(scene)
            task_id, artifact_id = await action(scene)
        except Exception as e:
            logger.warning(
                "%s: scene %d (%s) failed: %s", label, order_index, scene_id, e
            )
            batch.results.append(
                UnitResult(
                    unit_id=scene_id,
                    order_index=order_index,
                    success=False,
                    error=str(e),
                )
            )
            continue

        batch.results.append(
            UnitResult(
                unit_id=scene_id,
                order_index=order_index,
                success=True,
                task_id=task_id,
                artifact_id=artifact_id,
            )
        )

    logger.info(
        "%s: %d/%d scenes started (%d failed)",
        label,
        batch.succeeded_count,
        batch.total_eligible,
        batch.failed_count,
    )
    return batch
