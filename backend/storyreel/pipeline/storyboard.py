"""Storyboard generation: story text to ordered scene descriptions.

The text LLM breaks a project's story into 4-8 visual scenes. Scenes are
persisted with ``order_index`` starting at 0 and unconfirmed descriptions;
the project moves to the ``scenes`` stage.

Regeneration asks the model again with the previous scenes and the user's
feedback, then replaces every scene of the project in one commit. Since the
stage never regresses, regeneration is only possible before images are
unlocked.
"""

import logging
import uuid
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from storyreel.db.models import Project, Scene
from storyreel.errors import InvalidRequestError
from storyreel.orchestrator.state import stage_rank
from storyreel.schemas.storyboard import StoryboardOutput
from storyreel.services import project_service, scene_service
from storyreel.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)


STORYBOARD_SYSTEM_PROMPT = """You are a professional video scriptwriter. Your task is to split the user's short story into independent scenes suitable for a short video.

OUTPUT REQUIREMENTS:
1. Split the story into 4-8 scenes (adjust to the length of the story)
2. Each scene should:
   - have a clear visual description
   - include the characters, their actions and the environment
   - suit a 5-10 second video shot
   - connect coherently with the scenes around it

3. Output JSON only, in this format:
{
  "scenes": [
    {
      "order_index": 0,
      "description": "Detailed visual description of the scene"
    }
  ]
}

NOTES:
- Do not output any text besides the JSON
- Make every description detailed enough to generate an image from it alone
- Each description should cover: setting, character action, mood and atmosphere, lighting"""

STYLE_GUIDANCE: dict[str, str] = {
    "realistic": "Realistic style, strong sense of reality, natural light and shadow",
    "anime": "Japanese anime style, vivid colors, clean lines",
    "cartoon": "Cartoon style, exaggerated and cute, bright colors",
    "cinematic": "Cinematic look, grand atmosphere, professional camera work",
    "watercolor": "Watercolor style, soft and elegant, artistic",
    "oil_painting": "Oil painting style, heavy texture, rich colors",
    "sketch": "Sketch style, line-driven, black, white and gray tones",
    "cyberpunk": "Cyberpunk style, neon lights, high-tech feel",
    "fantasy": "Fantasy style, magical elements, dreamlike colors",
    "scifi": "Science fiction style, futuristic, high-tech elements",
}

STORYBOARD_TEMPERATURE = 0.8


def style_guidance(style: Optional[str]) -> str:
    """Style guidance line for the prompt; unknown styles fall back to realistic."""
    return "Style guidance: " + STYLE_GUIDANCE.get(style or "realistic", STYLE_GUIDANCE["realistic"])


def build_storyboard_prompt(
    story: str,
    style: Optional[str],
    previous: Optional[list[str]] = None,
    feedback: Optional[str] = None,
) -> str:
    """User prompt for scene generation, optionally seeded with a previous attempt."""
    parts = [
        "Split the following story into video scenes:",
        "",
        story.strip(),
        "",
        style_guidance(style),
    ]
    if previous:
        parts += ["", "Previously generated scenes:"]
        parts += [f"Scene {i + 1}: {text}" for i, text in enumerate(previous)]
    if feedback and feedback.strip():
        parts += ["", f"User feedback: {feedback.strip()}"]
        parts.append("Regenerate the scenes taking this feedback into account.")
    elif previous:
        parts += ["", "Generate a different, improved set of scenes."]
    return "\n".join(parts)


async def _ask_for_scenes(adapter: LLMAdapter, prompt: str) -> list[str]:
    # Adapter retries transport errors; this outer retry covers schema misses
    @retry(
        stop=stop_after_attempt(2),
        retry=retry_if_exception_type(ValidationError),
        reraise=True,
    )
    async def _generate() -> StoryboardOutput:
        return await adapter.generate_text(
            prompt=prompt,
            schema=StoryboardOutput,
            temperature=STORYBOARD_TEMPERATURE,
            system_prompt=STORYBOARD_SYSTEM_PROMPT,
        )

    storyboard = await _generate()
    descriptions = [d for d in storyboard.descriptions() if d]
    if not descriptions:
        raise InvalidRequestError("The model returned no usable scenes")
    return descriptions


def _require_story(project: Project) -> None:
    if project.mode != "story":
        raise InvalidRequestError("Scenes are only generated for story-mode projects")
    if not (project.story or "").strip():
        raise InvalidRequestError("Project has no story content")
    if stage_rank(project.stage) > stage_rank("scenes"):
        raise InvalidRequestError(
            f"Project is already in the {project.stage} stage; scenes can no longer be replaced"
        )


async def generate_scenes(
    session: AsyncSession,
    project_id: uuid.UUID,
    adapter: Optional[LLMAdapter] = None,
) -> list[Scene]:
    """Break the project's story into scenes and persist them.

    Args:
        session: AsyncSession for database operations.
        project_id: Project whose story is split.
        adapter: Optional LLMAdapter; defaults to the configured text provider.

    Returns:
        The created scenes in order.

    Raises:
        InvalidRequestError: Not a story project, empty story, or scenes
            already exist (use regenerate_scenes).
        ConfigurationError: The text provider is not configured.
    """
    project = await project_service.get_project(session, project_id)
    _require_story(project)
    if await project_service.list_scenes(session, project_id):
        raise InvalidRequestError("Project already has scenes; regenerate them instead")

    adapter = adapter or get_adapter()
    prompt = build_storyboard_prompt(project.story, project.style)
    descriptions = await _ask_for_scenes(adapter, prompt)

    scenes = await scene_service.create_scenes(session, project_id, descriptions)
    project_service.move_stage(project, "scenes")
    await session.commit()
    logger.info("Project %s: generated %d scenes", project_id, len(scenes))
    return scenes


async def regenerate_scenes(
    session: AsyncSession,
    project_id: uuid.UUID,
    feedback: Optional[str] = None,
    adapter: Optional[LLMAdapter] = None,
) -> list[Scene]:
    """Replace all scenes of a project with a fresh breakdown.

    The previous descriptions and the feedback go into the prompt. Existing
    scenes are only deleted once the model has answered, so a provider
    failure leaves the project untouched.
    """
    project = await project_service.get_project(session, project_id)
    _require_story(project)

    previous = [s.description for s in await project_service.list_scenes(session, project_id)]
    adapter = adapter or get_adapter()
    prompt = build_storyboard_prompt(project.story, project.style, previous, feedback)
    descriptions = await _ask_for_scenes(adapter, prompt)

    removed = await scene_service.delete_scenes(session, project_id)
    await session.flush()
    scenes = await scene_service.create_scenes(session, project_id, descriptions)
    project_service.move_stage(project, "scenes")
    await session.commit()
    logger.info(
        "Project %s: regenerated scenes (%d removed, %d created)",
        project_id, removed, len(scenes),
    )
    return scenes
