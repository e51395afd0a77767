"""Scene materials: attachments that guide generation.

Deleting a material removes only its database row. Stored files are left
in place; orphan cleanup is out of scope.
"""

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.db.models import Material, Scene
from storyreel.errors import InvalidRequestError, NotFoundError
from storyreel.schemas.materials import (
    FileMaterial,
    TextMaterial,
    decode_payload,
    encode_payload,
)
from storyreel.services.file_manager import FileManager
from storyreel.services.providers.base import ReferenceMaterial

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 100 * 1024 * 1024

_CONTENT_TYPE_PREFIXES = {"image": "image/", "video": "video/", "audio": "audio/"}


async def _get_scene(session: AsyncSession, scene_id: uuid.UUID) -> Scene:
    scene = await session.get(Scene, scene_id)
    if scene is None:
        raise NotFoundError(f"Scene not found: {scene_id}")
    return scene


async def _next_order(session: AsyncSession, scene_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.max(Material.order_index)).where(Material.scene_id == scene_id)
    )
    current = result.scalar_one_or_none()
    return 0 if current is None else current + 1


async def add_text_material(session: AsyncSession, scene_id: uuid.UUID, content: str) -> Material:
    await _get_scene(session, scene_id)
    if not content or not content.strip():
        raise InvalidRequestError("Text material content is required")
    payload = TextMaterial(content=content.strip())
    material = Material(
        scene_id=scene_id,
        type="text",
        payload=encode_payload(payload),
        order_index=await _next_order(session, scene_id),
    )
    session.add(material)
    await session.commit()
    return material


async def add_file_material(
    session: AsyncSession,
    scene_id: uuid.UUID,
    material_type: str,
    original_name: str,
    data: bytes,
    file_manager: FileManager,
    content_type: Optional[str] = None,
) -> Material:
    """Store an uploaded file and attach it to a scene."""
    scene = await _get_scene(session, scene_id)
    prefix = _CONTENT_TYPE_PREFIXES.get(material_type)
    if prefix is None:
        raise InvalidRequestError(f"Unsupported file material type: {material_type}")
    if content_type and not content_type.startswith(prefix):
        raise InvalidRequestError(
            f"Content type {content_type} does not match material type {material_type}"
        )
    if not data:
        raise InvalidRequestError("Uploaded file is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise InvalidRequestError("Uploaded file is too large")

    stored = file_manager.save_material(scene.project_id, original_name, data)
    payload = FileMaterial(
        type=material_type,
        original_name=original_name,
        content_type=content_type,
        size=len(data),
    )
    material = Material(
        scene_id=scene_id,
        type=material_type,
        storage_path=stored.storage_path,
        url=stored.url,
        payload=encode_payload(payload),
        order_index=await _next_order(session, scene_id),
    )
    session.add(material)
    await session.commit()
    logger.info("Scene %s: %s material %s stored at %s", scene_id, material_type, material.id, stored)
    return material


async def list_materials(
    session: AsyncSession, scene_id: uuid.UUID, material_type: Optional[str] = None
) -> list[Material]:
    stmt = select(Material).where(Material.scene_id == scene_id)
    if material_type:
        stmt = stmt.where(Material.type == material_type)
    result = await session.execute(stmt.order_by(Material.order_index))
    return list(result.scalars().all())


async def latest_material(
    session: AsyncSession, scene_id: uuid.UUID, material_type: Optional[str] = None
) -> Optional[Material]:
    materials = await list_materials(session, scene_id, material_type)
    return materials[-1] if materials else None


def payload_of(material: Material) -> Union[TextMaterial, FileMaterial]:
    return decode_payload(material.type, material.payload)


async def delete_material(session: AsyncSession, material_id: uuid.UUID) -> None:
    """Remove the database record only; the stored file is kept."""
    material = await session.get(Material, material_id)
    if material is None:
        raise NotFoundError(f"Material not found: {material_id}")
    await session.delete(material)
    await session.commit()
    logger.info("Deleted material %s (file %s kept)", material_id, material.storage_path or "-")


async def reference_materials(session: AsyncSession, scene_id: uuid.UUID) -> list[ReferenceMaterial]:
    """Scene materials in the shape generation requests expect."""
    refs = []
    for material in await list_materials(session, scene_id):
        payload = payload_of(material)
        if isinstance(payload, TextMaterial):
            refs.append(ReferenceMaterial(type="text", content=payload.content))
        elif material.url:
            refs.append(ReferenceMaterial(type=material.type, url=material.url))
    return refs
