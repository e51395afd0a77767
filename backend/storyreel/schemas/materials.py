"""Typed payloads for scene materials.

The ``metadata`` column is decoded exactly once, here, into a variant keyed
by material type: text materials carry their content, file materials carry
file metadata. Callers never poke at the raw dict.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class TextMaterial(BaseModel):
    """Free text attached to a scene (dialogue, notes, prompt additions)."""

    type: Literal["text"] = "text"
    content: str = Field(min_length=1)


class FileMaterial(BaseModel):
    """An uploaded image, video or audio file."""

    type: Literal["image", "video", "audio"]
    original_name: str
    content_type: Optional[str] = None
    size: int = Field(default=0, ge=0)


MaterialPayload = Annotated[Union[TextMaterial, FileMaterial], Field(discriminator="type")]

_payload_adapter: TypeAdapter = TypeAdapter(MaterialPayload)

MATERIAL_TYPES = ("image", "video", "audio", "text")


def decode_payload(material_type: str, metadata: Optional[dict]) -> Union[TextMaterial, FileMaterial]:
    """Decode a stored metadata dict into its typed variant.

    The row's ``type`` column is authoritative over any ``type`` key in the
    stored dict.
    """
    data = dict(metadata or {})
    data["type"] = material_type
    return _payload_adapter.validate_python(data)


def encode_payload(payload: Union[TextMaterial, FileMaterial]) -> dict:
    """Dict stored in the metadata column (type lives in its own column)."""
    return payload.model_dump(exclude={"type"}, exclude_none=True)
