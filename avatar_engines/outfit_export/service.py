"""Multi-outfit export: throttled batches of renders, bundles or 2D thumbnails into one zip."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel

from avatar_engines.asset_bundle.archive import pack_bundle, pack_entries
from avatar_engines.asset_bundle.service import (
    AssetBundleBuilder,
    outfit_base_name,
    safe_file_name,
)
from avatar_engines.common.errors import NotFound
from avatar_engines.roblox_identity.service import RobloxIdentityResolver
from avatar_engines.scene_engine.avatar.service import AvatarArticulator
from avatar_engines.scene_engine.camera.models import FramingMode
from avatar_engines.scene_engine.reconstruct.service import reconstruct_scene
from avatar_engines.scene_engine.view.service import BatchRenderer

logger = logging.getLogger(__name__)

DEFAULT_RENDER_BATCH = 1
DEFAULT_BUNDLE_BATCH = 3
DEFAULT_THUMBNAIL_BATCH = 3
THUMBNAIL_NAME_LENGTH = 50

T = TypeVar("T")
R = TypeVar("R")


class ExportItem(BaseModel):
    id: int
    name: Optional[str] = None


class BatchOutcome(Generic[T, R]):
    """Result slot for one batch item: either ``value`` or ``error`` is set."""

    __slots__ = ("item", "value", "error")

    def __init__(self, item: T, value: Optional[R] = None, error: Optional[BaseException] = None):
        self.item = item
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_batched(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
) -> List[BatchOutcome]:
    """Run ``worker`` over ``items`` at most ``batch_size`` at a time.

    Batches run one after another; a failing item is recorded and never
    aborts its siblings. Outcomes keep the input order.
    """
    size = max(1, int(batch_size))
    outcomes: List[BatchOutcome] = []
    for start in range(0, len(items), size):
        chunk = items[start:start + size]
        results = await asyncio.gather(*(worker(item) for item in chunk), return_exceptions=True)
        for item, result in zip(chunk, results):
            if isinstance(result, Exception):
                logger.warning("Batch item %s failed: %s", item, result)
                outcomes.append(BatchOutcome(item, error=result))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(BatchOutcome(item, value=result))
    return outcomes


def failure_entry(item_id: Any, error: BaseException) -> Tuple[str, bytes]:
    message = getattr(error, "message", None) or str(error) or error.__class__.__name__
    return f"FAILED_{item_id}.txt", f"Error: {message}".encode("utf-8")


def render_entry_name(item: ExportItem) -> str:
    return f"Render_{item.id}_{safe_file_name(item.name)}.png"


def thumbnail_entry_name(item: ExportItem) -> str:
    return f"Render_{item.id}_{safe_file_name(item.name, max_length=THUMBNAIL_NAME_LENGTH)}.png"


class OutfitExporter:
    def __init__(
        self,
        resolver: RobloxIdentityResolver,
        builder: AssetBundleBuilder,
        renderer: Optional[BatchRenderer] = None,
    ):
        self.resolver = resolver
        self.builder = builder
        self.renderer = renderer or BatchRenderer()

    async def build_outfit_bundle(self, outfit_id: int, name: Optional[str]):
        descriptor = await self.resolver.resolve_outfit_descriptor(outfit_id)
        return await self.builder.build(descriptor, outfit_base_name(outfit_id, name))

    async def render_outfit(
        self,
        outfit_id: int,
        name: Optional[str],
        pose: Optional[str] = None,
        strict_pose: bool = False,
    ) -> bytes:
        """Reconstruct, optionally pose, and draw a single outfit as PNG.

        With ``strict_pose`` a model without body parts fails with
        PoseUnavailable instead of rendering unposed.
        """
        bundle = await self.build_outfit_bundle(outfit_id, name)
        session = await reconstruct_scene(bundle, framing=FramingMode.BATCH)
        with session:
            if pose:
                articulator = AvatarArticulator(session)
                if articulator.has_body_parts() or strict_pose:
                    articulator.apply_pose(pose)
                else:
                    logger.info("Outfit %s has no body parts; rendering unposed", outfit_id)
            return await self.renderer.render_async(session)

    async def export_renders(
        self,
        outfits: Sequence[ExportItem],
        pose: Optional[str] = None,
        batch_size: int = DEFAULT_RENDER_BATCH,
    ) -> bytes:
        async def worker(item: ExportItem) -> bytes:
            return await self.render_outfit(item.id, item.name, pose)

        outcomes = await run_batched(list(outfits), worker, batch_size)
        entries = []
        for outcome in outcomes:
            if outcome.ok:
                entries.append((render_entry_name(outcome.item), outcome.value))
            else:
                entries.append(failure_entry(outcome.item.id, outcome.error))
        logger.info(
            "Exported %d renders (%d failed)", len(outcomes), sum(1 for o in outcomes if not o.ok)
        )
        return pack_entries(entries)

    async def export_bundles(
        self,
        outfits: Sequence[ExportItem],
        batch_size: int = DEFAULT_BUNDLE_BATCH,
    ) -> bytes:
        async def worker(item: ExportItem) -> Tuple[str, bytes]:
            bundle = await self.build_outfit_bundle(item.id, item.name)
            return f"{bundle.base_name}.zip", pack_bundle(bundle)

        outcomes = await run_batched(list(outfits), worker, batch_size)
        entries = []
        for outcome in outcomes:
            if outcome.ok:
                entries.append(outcome.value)
            else:
                entries.append(failure_entry(outcome.item.id, outcome.error))
        logger.info(
            "Exported %d bundles (%d failed)", len(outcomes), sum(1 for o in outcomes if not o.ok)
        )
        return pack_entries(entries)

    async def export_thumbnails(
        self,
        outfits: Sequence[ExportItem],
        batch_size: int = DEFAULT_THUMBNAIL_BATCH,
    ) -> bytes:
        """Zip the upstream 2D outfit renders; unavailable ones get a failure marker."""
        items = list(outfits)
        urls = await self.resolver.fetch_outfit_thumbnail_urls([item.id for item in items])

        async def worker(item: ExportItem) -> bytes:
            url = urls.get(str(item.id))
            if not url:
                raise NotFound("Render not available.", details={"outfitId": item.id})
            return await self.resolver.fetch_render_image(url)

        outcomes = await run_batched(items, worker, batch_size)
        entries = []
        for outcome in outcomes:
            if outcome.ok:
                entries.append((thumbnail_entry_name(outcome.item), outcome.value))
            else:
                entries.append(failure_entry(outcome.item.id, outcome.error))
        logger.info(
            "Exported %d thumbnails (%d failed)", len(outcomes), sum(1 for o in outcomes if not o.ok)
        )
        return pack_entries(entries)
