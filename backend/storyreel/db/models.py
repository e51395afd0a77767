"""SQLAlchemy 2.0 ORM models for StoryReel."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models.

    Server-generated timestamps are fetched with RETURNING on insert and
    update, so they can be read after commit without lazy IO.
    """
    __mapper_args__ = {"eager_defaults": True}


class Project(Base):
    """A story being turned into a sequence of scene videos.

    ``stage`` only ever moves forward through draft, scenes, images,
    videos, completed.
    """
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200))
    story: Mapped[str] = mapped_column(Text, default="")
    style: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    stage: Mapped[str] = mapped_column(String(20), default="draft")
    mode: Mapped[str] = mapped_column(String(20), default="story")  # 'story' or 'free'
    output_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class Scene(Base):
    """One storyboard unit, tracked independently for image and video."""
    __tablename__ = "scenes"
    __table_args__ = (
        UniqueConstraint("project_id", "order_index", name="uq_scenes_project_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    order_index: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(Text, default="")
    description_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    image_status: Mapped[str] = mapped_column(String(20), default="pending")
    image_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    video_status: Mapped[str] = mapped_column(String(20), default="pending")
    video_confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    mode: Mapped[str] = mapped_column(String(20), default="story")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now()
    )


class Image(Base):
    """Generated image artifact, versioned per scene.

    A row with ``task_id`` set and empty ``storage_path``/``url`` is an
    in-flight generation that is updated in place when the provider finishes.
    """
    __tablename__ = "images"
    __table_args__ = (
        UniqueConstraint("scene_id", "version", name="uq_images_scene_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    scene_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("scenes.id", ondelete="CASCADE"), index=True
    )
    version: Mapped[int] = mapped_column(Integer)
    storage_path: Mapped[str] = mapped_column(String(500), default="")
    url: Mapped[str] = mapped_column(String(1000), default="")
    task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    @property
    def is_in_flight(self) -> bool:
        return bool(self.task_id) and not self.storage_path and not self.url and self.error_message is None


class Video(Base):
    """Generated video artifact, versioned per scene.

    Same in-flight convention as Image.
    """
    __tablename__ = "videos"
    __table_args__ = (
        UniqueConstraint("scene_id", "version", name="uq_videos_scene_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    scene_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("scenes.id", ondelete="CASCADE"), index=True
    )
    version: Mapped[int] = mapped_column(Integer)
    storage_path: Mapped[str] = mapped_column(String(500), default="")
    url: Mapped[str] = mapped_column(String(1000), default="")
    task_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    @property
    def is_in_flight(self) -> bool:
        return bool(self.task_id) and not self.storage_path and not self.url and self.error_message is None


class Material(Base):
    """Free-form attachment owned by a scene.

    ``payload`` holds the kind-specific fields decoded by
    storyreel.schemas.materials. Deleting a row never touches the stored file.
    """
    __tablename__ = "materials"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    scene_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("scenes.id", ondelete="CASCADE"), index=True
    )
    type: Mapped[str] = mapped_column(String(10))  # image, video, audio, text
    storage_path: Mapped[str] = mapped_column(String(500), default="")
    url: Mapped[str] = mapped_column(String(1000), default="")
    # "metadata" is reserved on declarative classes
    payload: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class VideoChain(Base):
    """Named, ordered collection of continuation-linked videos."""
    __tablename__ = "video_chains"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


class VideoChainItem(Base):
    """Membership of a video in a chain.

    Ordering within a chain is by ``order_index`` alone. ``parent_video_id``
    records which video's last frame seeded this one; it is lineage metadata,
    not a structural edge, so branches from one parent still form a single
    flat ordered list.
    """
    __tablename__ = "video_chain_items"
    __table_args__ = (
        UniqueConstraint("video_id", name="uq_chain_items_video"),
        UniqueConstraint("chain_id", "order_index", name="uq_chain_items_chain_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    chain_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("video_chains.id", ondelete="CASCADE"), index=True
    )
    video_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"))
    order_index: Mapped[int] = mapped_column(Integer)
    parent_video_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("videos.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())


ARTIFACT_MODELS = {"image": Image, "video": Video}


def artifact_model(kind: str):
    """Return the ORM class storing artifacts of the given kind."""
    try:
        return ARTIFACT_MODELS[kind]
    except KeyError:
        raise ValueError(f"Unknown artifact kind: {kind}") from None
