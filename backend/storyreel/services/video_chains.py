"""Video continuation chains.

A chain is a flat, ordered list of videos. Each item may record the video
whose last frame seeded it (``parent_video_id``), but that back-reference is
lineage only: several items can name the same parent, and ordering comes
from ``order_index`` alone. Do not turn this into a tree; the stitcher and
chain views walk items by order_index.

Rules enforced here:
- ``order_index`` is assigned as max(existing) + 1, starting at 0
- a video belongs to at most one chain
- a parent must be an earlier member of the same chain
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.db.models import Project, Video, VideoChain, VideoChainItem
from storyreel.errors import InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ChainView:
    chain: VideoChain
    items: list[tuple[VideoChainItem, Video]] = field(default_factory=list)


async def create_chain(session: AsyncSession, project_id: uuid.UUID, name: str) -> VideoChain:
    """Create an empty chain for a project."""
    if await session.get(Project, project_id) is None:
        raise NotFoundError(f"Project not found: {project_id}")
    chain = VideoChain(project_id=project_id, name=name)
    session.add(chain)
    await session.commit()
    logger.info("Created video chain %s (%s) for project %s", chain.id, name, project_id)
    return chain


async def lookup_chain_for_video(
    session: AsyncSession, video_id: uuid.UUID
) -> Optional[VideoChainItem]:
    """Return the chain item referencing a video, or None."""
    result = await session.execute(
        select(VideoChainItem).where(VideoChainItem.video_id == video_id)
    )
    return result.scalar_one_or_none()


async def _next_order_index(session: AsyncSession, chain_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.max(VideoChainItem.order_index)).where(VideoChainItem.chain_id == chain_id)
    )
    current = result.scalar_one_or_none()
    return 0 if current is None else current + 1


async def append_to_chain(
    session: AsyncSession,
    chain_id: uuid.UUID,
    video_id: uuid.UUID,
    parent_video_id: Optional[uuid.UUID] = None,
) -> VideoChainItem:
    """Append a video to the end of a chain.

    Appending a video that is already in this chain returns its existing
    item unchanged.

    Raises:
        NotFoundError: Chain or video does not exist.
        InvalidRequestError: The video is in a different chain, or the
            parent is not a member of this chain.
    """
    chain = await session.get(VideoChain, chain_id)
    if chain is None:
        raise NotFoundError(f"Video chain not found: {chain_id}")
    if await session.get(Video, video_id) is None:
        raise NotFoundError(f"Video not found: {video_id}")

    existing = await lookup_chain_for_video(session, video_id)
    if existing is not None:
        if existing.chain_id != chain_id:
            raise InvalidRequestError(
                f"Video {video_id} already belongs to chain {existing.chain_id}"
            )
        return existing

    if parent_video_id is not None:
        parent_item = await lookup_chain_for_video(session, parent_video_id)
        if parent_item is None or parent_item.chain_id != chain_id:
            raise InvalidRequestError(
                f"Parent video {parent_video_id} is not a member of chain {chain_id}"
            )

    item = VideoChainItem(
        chain_id=chain_id,
        video_id=video_id,
        order_index=await _next_order_index(session, chain_id),
        parent_video_id=parent_video_id,
    )
    session.add(item)
    await session.commit()
    logger.info(
        "Chain %s: appended video %s at %d (parent=%s)",
        chain_id, video_id, item.order_index, parent_video_id,
    )
    return item


async def get_chain_with_items(session: AsyncSession, chain_id: uuid.UUID) -> ChainView:
    """Load a chain and its videos in order."""
    chain = await session.get(VideoChain, chain_id)
    if chain is None:
        raise NotFoundError(f"Video chain not found: {chain_id}")
    result = await session.execute(
        select(VideoChainItem, Video)
        .join(Video, Video.id == VideoChainItem.video_id)
        .where(VideoChainItem.chain_id == chain_id)
        .order_by(VideoChainItem.order_index)
    )
    return ChainView(chain=chain, items=[(item, video) for item, video in result.all()])


async def list_chains(session: AsyncSession, project_id: uuid.UUID) -> list[VideoChain]:
    result = await session.execute(
        select(VideoChain)
        .where(VideoChain.project_id == project_id)
        .order_by(VideoChain.created_at)
    )
    return list(result.scalars().all())


async def remove_video_from_chain(session: AsyncSession, video_id: uuid.UUID) -> bool:
    """Remove a video's chain membership.

    Items that named the removed video as parent lose that back-reference,
    since a parent must be a member of the same chain. Remaining order
    indexes are left as they are, so ordering stays strictly increasing.

    Returns:
        True if the video was in a chain.
    """
    item = await lookup_chain_for_video(session, video_id)
    if item is None:
        return False
    await session.execute(
        update(VideoChainItem)
        .where(
            VideoChainItem.chain_id == item.chain_id,
            VideoChainItem.parent_video_id == video_id,
        )
        .values(parent_video_id=None)
    )
    await session.delete(item)
    await session.commit()
    logger.info("Removed video %s from chain %s", video_id, item.chain_id)
    return True


async def delete_chain(session: AsyncSession, chain_id: uuid.UUID) -> None:
    """Delete a chain and its items. Videos are kept."""
    chain = await session.get(VideoChain, chain_id)
    if chain is None:
        raise NotFoundError(f"Video chain not found: {chain_id}")
    await session.delete(chain)
    await session.commit()
    logger.info("Deleted video chain %s", chain_id)
