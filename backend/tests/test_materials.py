"""Scene materials and their typed payloads."""

import pytest
from pydantic import ValidationError

from storyreel.errors import InvalidRequestError, NotFoundError
from storyreel.schemas.materials import FileMaterial, TextMaterial, decode_payload, encode_payload
from storyreel.services import material_service


async def test_text_material_round_trip(session, make_project, make_scene):
    project = await make_project()
    scene = await make_scene(project)

    material = await material_service.add_text_material(session, scene.id, "  Narrator: the storm breaks  ")

    assert material.type == "text"
    assert material.payload == {"content": "Narrator: the storm breaks"}
    payload = material_service.payload_of(material)
    assert isinstance(payload, TextMaterial)
    assert payload.content == "Narrator: the storm breaks"


async def test_file_material_is_stored(session, make_project, make_scene, file_manager):
    project = await make_project()
    scene = await make_scene(project)

    material = await material_service.add_file_material(
        session, scene.id, "image", "Keeper.PNG", b"png-bytes", file_manager, content_type="image/png"
    )

    assert material.storage_path.startswith(f"{project.id}/materials/")
    assert material.storage_path.endswith(".png")
    assert file_manager.resolve(material.storage_path).read_bytes() == b"png-bytes"
    payload = material_service.payload_of(material)
    assert isinstance(payload, FileMaterial)
    assert (payload.original_name, payload.size) == ("Keeper.PNG", 9)


async def test_file_material_validation(session, make_project, make_scene, file_manager):
    project = await make_project()
    scene = await make_scene(project)

    with pytest.raises(InvalidRequestError, match="does not match"):
        await material_service.add_file_material(
            session, scene.id, "audio", "clip.mp4", b"x", file_manager, content_type="video/mp4"
        )
    with pytest.raises(InvalidRequestError, match="Unsupported"):
        await material_service.add_file_material(session, scene.id, "text", "a.txt", b"x", file_manager)
    with pytest.raises(InvalidRequestError, match="empty"):
        await material_service.add_file_material(session, scene.id, "image", "a.png", b"", file_manager)


async def test_order_and_latest(session, make_project, make_scene, file_manager):
    project = await make_project()
    scene = await make_scene(project)
    await material_service.add_text_material(session, scene.id, "first")
    await material_service.add_file_material(session, scene.id, "image", "a.png", b"a", file_manager)
    last_image = await material_service.add_file_material(session, scene.id, "image", "b.png", b"b", file_manager)

    materials = await material_service.list_materials(session, scene.id)
    latest = await material_service.latest_material(session, scene.id, "image")

    assert [m.order_index for m in materials] == [0, 1, 2]
    assert latest.id == last_image.id


async def test_delete_keeps_file(session, make_project, make_scene, file_manager):
    project = await make_project()
    scene = await make_scene(project)
    material = await material_service.add_file_material(
        session, scene.id, "audio", "waves.mp3", b"mp3", file_manager, content_type="audio/mpeg"
    )
    path = file_manager.resolve(material.storage_path)

    await material_service.delete_material(session, material.id)

    assert await material_service.list_materials(session, scene.id) == []
    assert path.exists()
    with pytest.raises(NotFoundError):
        await material_service.delete_material(session, material.id)


async def test_reference_materials(session, make_project, make_scene, file_manager):
    project = await make_project()
    scene = await make_scene(project)
    await material_service.add_text_material(session, scene.id, "Slow pan")
    await material_service.add_file_material(
        session, scene.id, "video", "motion.mp4", b"v", file_manager, content_type="video/mp4"
    )

    refs = await material_service.reference_materials(session, scene.id)

    assert [(r.type, r.content) for r in refs][0] == ("text", "Slow pan")
    assert refs[1].type == "video"
    assert refs[1].url.startswith("http://media.example.com/media/")


def test_decode_uses_row_type():
    payload = decode_payload("audio", {"type": "image", "original_name": "a.mp3", "size": 3})

    assert isinstance(payload, FileMaterial)
    assert payload.type == "audio"
    assert encode_payload(payload) == {"original_name": "a.mp3", "size": 3}


def test_decode_rejects_text_without_content():
    with pytest.raises(ValidationError):
        decode_payload("text", {})
