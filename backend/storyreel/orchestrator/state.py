"""State machine constants and transition logic for projects and scenes.

Two machines live here:
- the project stage machine, an ordered sequence that never regresses
- the per-scene status machine, one instance per artifact kind (image, video)

Everything in this module is pure; services apply the results to ORM rows.
"""

from typing import Iterable, Optional, Protocol

from storyreel.errors import InvalidRequestError

# Project stages in pipeline order
STAGES = ("draft", "scenes", "images", "videos", "completed")

STAGE_DESCRIPTIONS = {
    "draft": "Project created, story not yet broken into scenes",
    "scenes": "Scene descriptions are being written and confirmed",
    "images": "Scene images are being generated and confirmed",
    "videos": "Scene videos are being generated and confirmed",
    "completed": "Every scene video confirmed",
}

# Scene sub-generation statuses
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
SCENE_STATUSES = frozenset({PENDING, PROCESSING, COMPLETED, FAILED})

KIND_IMAGE = "image"
KIND_VIDEO = "video"
ARTIFACT_KINDS = (KIND_IMAGE, KIND_VIDEO)

# Allowed transitions, independent of the confirmation flag
_TRANSITIONS = {
    PENDING: frozenset({PROCESSING}),
    PROCESSING: frozenset({COMPLETED, FAILED, PENDING}),
    FAILED: frozenset({PROCESSING}),
    COMPLETED: frozenset({PROCESSING}),
}

# Statuses a batch run picks up
BATCH_ELIGIBLE_STATUSES = frozenset({PENDING, FAILED})


class SceneLike(Protocol):
    description_confirmed: bool
    image_status: str
    image_confirmed: bool
    video_status: str
    video_confirmed: bool


def stage_rank(stage: str) -> int:
    """Return the position of a stage in pipeline order."""
    try:
        return STAGES.index(stage)
    except ValueError:
        raise InvalidRequestError(f"Unknown project stage: {stage}") from None


def next_stage(stage: str) -> Optional[str]:
    """Return the stage after ``stage``, or None at the end of the pipeline."""
    rank = stage_rank(stage)
    if rank + 1 < len(STAGES):
        return STAGES[rank + 1]
    return None


def advance_stage(current: str, target: str) -> str:
    """Return the later of two stages.

    Used for every stage write so no operation can move a project backwards.
    """
    if stage_rank(target) > stage_rank(current):
        return target
    return current


def status_of(scene: SceneLike, kind: str) -> str:
    return getattr(scene, f"{_check_kind(kind)}_status")


def confirmed_of(scene: SceneLike, kind: str) -> bool:
    return getattr(scene, f"{_check_kind(kind)}_confirmed")


def _check_kind(kind: str) -> str:
    if kind not in ARTIFACT_KINDS:
        raise InvalidRequestError(f"Unknown artifact kind: {kind}")
    return kind


def can_transition(current: str, target: str, confirmed: bool) -> bool:
    """Check whether a scene sub-machine may move from current to target.

    A confirmed artifact is permanently terminal: there is no un-confirm
    operation, so nothing may move a confirmed scene away from completed.
    """
    if confirmed:
        return False
    return target in _TRANSITIONS.get(current, frozenset())


def check_transition(kind: str, current: str, target: str, confirmed: bool) -> None:
    """Raise InvalidRequestError if the transition is not allowed."""
    if not can_transition(current, target, confirmed):
        if confirmed:
            raise InvalidRequestError(
                f"Scene {kind} is confirmed and can no longer change"
            )
        raise InvalidRequestError(
            f"Scene {kind} cannot go from {current} to {target}"
        )


def generation_precondition(scene: SceneLike, kind: str) -> Optional[str]:
    """Return why generation of ``kind`` cannot start, or None if it can.

    Image generation needs a confirmed description, video generation needs
    a completed image. Status/confirmation gates are checked as well.
    """
    if kind == KIND_IMAGE:
        if not scene.description_confirmed:
            return "Scene description must be confirmed before generating an image"
    elif kind == KIND_VIDEO:
        if scene.image_status != COMPLETED:
            return "Scene image must be completed before generating a video"
    else:
        return f"Unknown artifact kind: {kind}"

    current = status_of(scene, kind)
    confirmed = confirmed_of(scene, kind)
    if confirmed:
        return f"Scene {kind} is confirmed and can no longer be regenerated"
    if current == PROCESSING:
        return f"Scene {kind} generation is already in progress"
    return None


def is_batch_eligible(scene: SceneLike, kind: str) -> bool:
    """Scenes a generate-all run should pick up."""
    if generation_precondition(scene, kind) is not None:
        return False
    return status_of(scene, kind) in BATCH_ELIGIBLE_STATUSES


def can_confirm(scene: SceneLike, kind: str) -> bool:
    return status_of(scene, kind) == COMPLETED


# ---------------------------------------------------------------------------
# Stage completion predicates
# ---------------------------------------------------------------------------
def _descriptions_done(scene: SceneLike) -> bool:
    return scene.description_confirmed


def _images_done(scene: SceneLike) -> bool:
    return scene.image_status == COMPLETED and scene.image_confirmed


def _videos_done(scene: SceneLike) -> bool:
    return scene.video_status == COMPLETED and scene.video_confirmed


# The stage a project reaches when every scene satisfies the predicate
STAGE_PREDICATES = (
    ("images", _descriptions_done),
    ("videos", _images_done),
    ("completed", _videos_done),
)


def reachable_stage(current: str, scenes: Iterable[SceneLike]) -> str:
    """Compute the stage a project should be in given its scenes.

    Walks the predicates in order and stops at the first one not satisfied
    by every scene. A project with no scenes never advances. The result is
    never earlier than ``current``.
    """
    scenes = list(scenes)
    if not scenes:
        return current

    stage = current
    for target, predicate in STAGE_PREDICATES:
        if not all(predicate(scene) for scene in scenes):
            break
        stage = advance_stage(stage, target)
    return stage
