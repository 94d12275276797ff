"""
Boundaries Toggle Controller
Keeps an enclosed layer (features inside the area of interest) and a
surrounding layer (features in the visible map extent) in sync with their
fetched data, the map's navigation state and the user's visibility toggle.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from loguru import logger

from components.edit_queue import get_edit_queue
from components.feature_layer import EditsResult, FeatureLayer, Graphic, MapView
from core.config import get_settings
from core.fetch_state import FetchedDataStore, FetchState, FetchStatus
from core.observable import Subscription
from core.services import AbortHandle, AbortSignal


DISABLED = "disabled"
ENABLED_HIDDEN = "enabled-hidden"
ENABLED_VISIBLE = "enabled-visible"


# =============================================================================
# SURROUNDINGS STATE
# =============================================================================

@dataclass
class SurroundingsState:
    """
    Visibility preference, scale gating and update flag per surrounding layer.
    Owned by the controllers; the fetch pipelines only read it.
    """
    visible: Dict[str, bool] = field(default_factory=dict)
    disabled: Dict[str, bool] = field(default_factory=dict)
    updating: Dict[str, bool] = field(default_factory=dict)

    def is_visible(self, layer_id: str) -> bool:
        return self.visible.get(layer_id, False)

    def is_disabled(self, layer_id: str) -> bool:
        return self.disabled.get(layer_id, False)

    def is_updating(self, layer_id: str) -> bool:
        return self.updating.get(layer_id, False)

    def status(self, layer_id: str) -> str:
        """One of 'disabled', 'enabled-hidden' or 'enabled-visible'."""
        if self.is_disabled(layer_id):
            return DISABLED
        return ENABLED_VISIBLE if self.is_visible(layer_id) else ENABLED_HIDDEN

    def reset(self, layer_id: Optional[str] = None) -> None:
        """Return one layer (or every layer) to hidden, enabled and idle."""
        maps = (self.visible, self.disabled, self.updating)
        if layer_id is None:
            for values in maps:
                values.clear()
            return
        for values in maps:
            values[layer_id] = False


# =============================================================================
# CONTROLLER
# =============================================================================

class BoundariesToggleController:
    """
    Orchestrates one enclosed/surrounding layer pair.

    Args:
        layer_id: Id of the enclosed layer; the surrounding layer is
            "surrounding_<layer_id>"
        map_view: The map view handle
        fetched_data: Store holding both datasets
        enclosed_key: Dataset key for the enclosed features
        surrounding_key: Dataset key for the surrounding features
        build_features: Converts dataset records to graphics
        update_surrounding_data: Refreshes the surrounding dataset for the
            current extent; receives an abort signal
        surroundings: Shared surroundings state
        min_scale: Surrounding features are disabled at or above this scale
        title: Layer title shown in the layer control
        reset_surrounding_data: Clears any cached surrounding request state
            on teardown, so the next mount fetches again

    Example:
        controller = BoundariesToggleController(
            "monitoringLocationsLayer", map_view, store,
            "monitoringLocations", "surroundingMonitoringLocations",
            build_features, dataset.update_surrounding_data, surroundings,
            reset_surrounding_data=dataset.reset_surroundings,
        )
        controller.mount()
        controller.toggle_surroundings(True)
        ...
        await controller.unmount()
    """

    def __init__(
        self,
        layer_id: str,
        map_view: MapView,
        fetched_data: FetchedDataStore,
        enclosed_key: str,
        surrounding_key: str,
        build_features: Callable[[Sequence[Any]], List[Graphic]],
        update_surrounding_data: Callable[[AbortSignal], Awaitable[None]],
        surroundings: Optional[SurroundingsState] = None,
        min_scale: Optional[float] = None,
        title: str = "",
        reset_surrounding_data: Optional[Callable[[], None]] = None,
    ):
        self.layer_id = layer_id
        self.map_view = map_view
        self.fetched_data = fetched_data
        self.enclosed_key = enclosed_key
        self.surrounding_key = surrounding_key
        self.build_features = build_features
        self.update_surrounding_data = update_surrounding_data
        self.reset_surrounding_data = reset_surrounding_data
        self.surroundings = surroundings if surroundings is not None else SurroundingsState()
        self.min_scale = min_scale if min_scale is not None else get_settings().default_min_scale

        self.enclosed_layer = FeatureLayer(layer_id, title=title, visible=True)
        self.surrounding_layer = FeatureLayer(
            f"surrounding_{layer_id}",
            title=f"Surrounding {title}".strip(),
            visible=False,
        )
        self.enclosed_queue = get_edit_queue(self.enclosed_layer, map_view)
        self.surrounding_queue = get_edit_queue(self.surrounding_layer, map_view)

        self._abort = AbortHandle()
        self._subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()
        self.mounted = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def disabled(self) -> bool:
        return self.surroundings.is_disabled(self.layer_id)

    @property
    def visible(self) -> bool:
        return self.surroundings.is_visible(self.layer_id)

    @property
    def updating(self) -> bool:
        return self.surroundings.is_updating(self.layer_id)

    def status(self) -> str:
        return self.surroundings.status(self.layer_id)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def mount(self) -> None:
        """
        Add the layers to the map and start reacting to map and data changes.
        Must be called while an event loop is running.
        """
        if self.mounted:
            return
        self.mounted = True
        self.map_view.add(self.enclosed_layer)
        self.map_view.add(self.surrounding_layer)
        self._subscriptions = [
            self.map_view.watch("scale", self.on_scale_change, initial=True),
            self.map_view.watch("stationary", self._on_stationary_changed, initial=True),
            self.fetched_data.subscribe(self.enclosed_key, self._on_enclosed_data, initial=True),
            self.fetched_data.subscribe(self.surrounding_key, self._on_surrounding_data, initial=True),
        ]

    async def unmount(self) -> None:
        """
        Stop listening, clear both layers, and return both datasets to pending
        so a later mount starts clean.
        """
        if not self.mounted:
            return
        self.mounted = False
        for subscription in self._subscriptions:
            subscription.remove()
        self._subscriptions = []
        self._abort.abort()
        await self.wait_idle()
        if self.reset_surrounding_data is not None:
            self.reset_surrounding_data()

        await self.reset_layers()
        self.map_view.remove(self.enclosed_layer)
        self.map_view.remove(self.surrounding_layer)
        self.surroundings.reset(self.layer_id)
        self.fetched_data.dispatch(FetchStatus.PENDING, self.enclosed_key)
        self.fetched_data.dispatch(FetchStatus.PENDING, self.surrounding_key)

    async def reset_layers(self) -> None:
        """Remove every feature from both layers."""
        await asyncio.gather(
            self.enclosed_queue.apply_features([]),
            self.surrounding_queue.apply_features([]),
        )

    async def wait_idle(self) -> None:
        """Wait for every fetch and edit this controller started."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=f"{self.layer_id}:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"{task.get_name()} failed: {error}")

    # -------------------------------------------------------------------------
    # Map events
    # -------------------------------------------------------------------------

    def on_scale_change(self, scale: Optional[float]) -> None:
        """Disable surrounding features when zoomed out past min_scale; restore them when zoomed back in."""
        if scale is None:
            return
        if scale >= self.min_scale and not self.disabled:
            self.surrounding_layer.visible = False
            self.surroundings.disabled[self.layer_id] = True
        elif scale < self.min_scale and self.disabled:
            self.surrounding_layer.visible = self.visible
            self.surroundings.disabled[self.layer_id] = False
            if self.map_view.stationary:
                self.on_stationary()

    def _on_stationary_changed(self, stationary: bool) -> None:
        if stationary:
            self.on_stationary()
        else:
            self.on_moving()

    def on_stationary(self) -> None:
        """Refresh the surrounding data if surrounding features are shown."""
        if self.disabled or not self.visible:
            return
        self.surroundings.updating[self.layer_id] = True
        self._spawn(self._update_surroundings(self._abort.get_signal()), "update_surroundings")

    async def _update_surroundings(self, signal: AbortSignal) -> None:
        try:
            await self.update_surrounding_data(signal)
        finally:
            self.surroundings.updating[self.layer_id] = False

    def on_moving(self) -> None:
        """Abort any in-flight surrounding fetch. Toggle state is unchanged."""
        self._abort.abort()

    def toggle_surroundings(self, show: bool) -> None:
        """User toggle for the surrounding features."""
        self.surroundings.visible[self.layer_id] = show
        self.surrounding_layer.visible = show and not self.disabled
        if show and self.mounted and self.map_view.stationary:
            self.on_stationary()

    # -------------------------------------------------------------------------
    # Data events
    # -------------------------------------------------------------------------

    def _on_enclosed_data(self, state: FetchState) -> None:
        if not state.ok:
            return
        self._spawn(self.enclosed_queue.apply_features(self.build_features(state.data)), "enclosed_edit")

    def _on_surrounding_data(self, state: FetchState) -> None:
        if not state.ok:
            return
        self._spawn(self.surrounding_queue.apply_features(self.build_features(state.data)), "surrounding_edit")

    async def show_enclosed_features(self, records: Sequence[Any]) -> EditsResult:
        """Replace the enclosed layer's features, e.g. with a filtered subset of its dataset."""
        return await self.enclosed_queue.apply_features(self.build_features(records))
