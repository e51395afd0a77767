"""Pydantic schemas for story-to-scenes structured output.

These schemas define the structure the text LLM must return when breaking
a story into scenes, and are passed as the response schema to adapters.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, field_validator


def _coerce_to_str(v: Any) -> str:
    """Coerce list/non-str values to a single string.

    Some providers return arrays for fields declared as string in the JSON
    schema. This validator normalises them so validation succeeds regardless
    of provider quirks.
    """
    if isinstance(v, list):
        return " ".join(str(item) for item in v)
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]


class SceneDescription(BaseModel):
    """One scene of the storyboard."""

    order_index: int = Field(
        default=0,
        ge=0,
        description="Zero-based position of the scene in the story",
    )
    description: CoercedStr = Field(
        min_length=1,
        description="Visual description of the scene: setting, characters, action, "
        "mood. Written so an image model can render it without other context.",
    )


class StoryboardOutput(BaseModel):
    """Complete scene breakdown of a story."""

    scenes: list[SceneDescription] = Field(
        min_length=1,
        description="Scenes in story order",
    )

    @field_validator("scenes")
    @classmethod
    def sort_scenes(cls, scenes: list[SceneDescription]) -> list[SceneDescription]:
        """Order by order_index; models occasionally shuffle them."""
        return sorted(scenes, key=lambda s: s.order_index)

    def descriptions(self) -> list[str]:
        return [s.description.strip() for s in self.scenes]
