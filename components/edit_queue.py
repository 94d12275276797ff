"""
Serialized layer updater.
Replaces all of a layer's features with a new batch, queueing requests that
arrive while an edit is in flight so edits against one layer never interleave.
"""
from __future__ import annotations

import asyncio
import weakref
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Sequence

from loguru import logger

from components.feature_layer import EditsResult, FeatureLayer, Graphic, MapView
from core.errors import EditConflict


@dataclass
class UpdateQueueEntry:
    """A waiting caller's result handle and the features it wants applied."""
    deferred: asyncio.Future
    features: List[Graphic] = field(default_factory=list)


class EditQueue:
    """
    FIFO edit queue for one layer.

    Example:
        queue = EditQueue(layer, map_view)
        result = await queue.apply_features(build_features(stations))
    """

    def __init__(self, layer: FeatureLayer, map_view: MapView):
        self.layer = layer
        self.map_view = map_view
        self.updating = False
        self.queue: Deque[UpdateQueueEntry] = deque()

    async def apply_features(self, features: Sequence[Graphic]) -> EditsResult:
        """
        Replace the layer's features with `features`.

        If an edit is already running, the request waits its turn and resolves
        once it has been applied.

        Raises:
            EditConflict: If this request's edit was rejected
        """
        if self.updating:
            entry = UpdateQueueEntry(asyncio.get_running_loop().create_future(), list(features))
            self.queue.append(entry)
            return await entry.deferred

        try:
            return await self._replace_all(list(features))
        finally:
            await self._drain()

    async def _replace_all(self, features: List[Graphic]) -> EditsResult:
        self.updating = True
        try:
            current = await self.layer.query_features()
            result = await self.layer.apply_edits(add_features=features, delete_features=current)
            await self.map_view.when_layer_view_updated(self.layer)
            return result
        except EditConflict as e:
            logger.warning(f"Edit rejected on layer {self.layer.id}: {e}")
            raise
        except Exception as e:
            logger.warning(f"Edit failed on layer {self.layer.id}: {e}")
            raise EditConflict(f"Edit failed on layer {self.layer.id}: {e}") from e
        finally:
            self.updating = False

    async def _drain(self) -> None:
        """Apply queued entries in arrival order, settling each entry's deferred."""
        while self.queue:
            entry = self.queue.popleft()
            if entry.deferred.done():
                continue
            try:
                result = await self._replace_all(entry.features)
            except EditConflict as e:
                if not entry.deferred.done():
                    entry.deferred.set_exception(e)
            except asyncio.CancelledError:
                self._reject_pending(entry)
                raise
            else:
                if not entry.deferred.done():
                    entry.deferred.set_result(result)

    def _reject_pending(self, current: UpdateQueueEntry) -> None:
        for entry in [current, *self.queue]:
            if not entry.deferred.done():
                entry.deferred.set_exception(EditConflict(f"Edits to layer {self.layer.id} were cancelled"))
        self.queue.clear()


_queues: "weakref.WeakKeyDictionary[FeatureLayer, EditQueue]" = weakref.WeakKeyDictionary()


def get_edit_queue(layer: FeatureLayer, map_view: MapView) -> EditQueue:
    """The edit queue for a layer, created on first use."""
    queue = _queues.get(layer)
    if queue is None:
        queue = EditQueue(layer, map_view)
        _queues[layer] = queue
    else:
        queue.map_view = map_view
    return queue


async def apply_features(layer: FeatureLayer, map_view: MapView, features: Sequence[Graphic]) -> EditsResult:
    """Replace all of a layer's features, serialized per layer."""
    return await get_edit_queue(layer, map_view).apply_features(features)
