"""Story to scenes with a scripted text adapter."""

import pytest
from pydantic import ValidationError

from storyreel.db.models import Project
from storyreel.errors import InvalidRequestError, ProviderError
from storyreel.pipeline import storyboard
from storyreel.schemas.storyboard import StoryboardOutput
from storyreel.services import project_service
from storyreel.services.llm import LLMAdapter
from storyreel.services.llm.chat_adapter import extract_json


class ScriptedAdapter(LLMAdapter):
    """Returns queued replies; a queued exception is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    def is_configured(self) -> bool:
        return True

    async def generate_text(self, prompt, schema, *, temperature=0.7, system_prompt=None, max_retries=3):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return schema.model_validate(reply)


def _scenes(*texts):
    return {"scenes": [{"order_index": i, "description": t} for i, t in enumerate(texts)]}


async def test_generate_scenes(session, make_project):
    project = await make_project()
    adapter = ScriptedAdapter(_scenes("Storm clouds gather", "The lamp flickers", "The boat lands"))

    scenes = await storyboard.generate_scenes(session, project.id, adapter)

    assert [s.order_index for s in scenes] == [0, 1, 2]
    assert scenes[1].description == "The lamp flickers"
    assert not any(s.description_confirmed for s in scenes)
    assert (await session.get(Project, project.id)).stage == "scenes"
    assert "Cinematic look" in adapter.prompts[0]


async def test_generate_scenes_twice_is_rejected(session, make_project, make_scene):
    project = await make_project(stage="scenes")
    await make_scene(project)

    with pytest.raises(InvalidRequestError, match="regenerate"):
        await storyboard.generate_scenes(session, project.id, ScriptedAdapter())


async def test_free_project_has_no_storyboard(session, make_project):
    project = await make_project(mode="free", story="")

    with pytest.raises(InvalidRequestError, match="story-mode"):
        await storyboard.generate_scenes(session, project.id, ScriptedAdapter())


async def test_schema_miss_is_retried_once(session, make_project):
    project = await make_project()
    adapter = ScriptedAdapter({"scenes": []}, _scenes("Only scene"))

    scenes = await storyboard.generate_scenes(session, project.id, adapter)

    assert len(adapter.prompts) == 2
    assert [s.description for s in scenes] == ["Only scene"]


async def test_regenerate_replaces_scenes_with_feedback(session, make_project, make_scene):
    project = await make_project(stage="scenes")
    await make_scene(project, 0, description="Old opening", description_confirmed=True)
    await make_scene(project, 1, description="Old ending")
    adapter = ScriptedAdapter(_scenes("New opening", "New middle", "New ending", "Epilogue"))

    scenes = await storyboard.regenerate_scenes(session, project.id, "More suspense", adapter)

    assert len(scenes) == 4
    stored = await project_service.list_scenes(session, project.id)
    assert [s.description for s in stored] == ["New opening", "New middle", "New ending", "Epilogue"]
    assert not stored[0].description_confirmed
    assert "Scene 1: Old opening" in adapter.prompts[0]
    assert "User feedback: More suspense" in adapter.prompts[0]


async def test_regenerate_failure_keeps_old_scenes(session, make_project, make_scene):
    project = await make_project(stage="scenes")
    await make_scene(project, 0, description="Keep me")

    with pytest.raises(ProviderError):
        await storyboard.regenerate_scenes(
            session, project.id, None, ScriptedAdapter(ProviderError("rate limited", status_code=429))
        )

    assert [s.description for s in await project_service.list_scenes(session, project.id)] == ["Keep me"]


async def test_regenerate_blocked_after_scenes_stage(session, make_project, make_scene):
    project = await make_project(stage="images")
    await make_scene(project)

    with pytest.raises(InvalidRequestError, match="images stage"):
        await storyboard.regenerate_scenes(session, project.id, None, ScriptedAdapter())


def test_storyboard_output_sorts_and_coerces():
    output = StoryboardOutput.model_validate(
        {"scenes": [
            {"order_index": 1, "description": ["two", "parts"]},
            {"order_index": 0, "description": "first"},
        ]}
    )

    assert output.descriptions() == ["first", "two parts"]
    with pytest.raises(ValidationError):
        StoryboardOutput.model_validate({"scenes": []})


def test_extract_json_unwraps_fences():
    raw = '```json\n{"scenes": [{"order_index": 0, "description": "x"}]}\n```'

    assert extract_json(raw).startswith('{"scenes"')
    with pytest.raises(ValueError):
        extract_json("I cannot help with that")
