"""One controller object per embedded map.

A ``MapSession`` owns the validated configuration, the engine mirror and the
controllers for a single embed. The browser forwards events to it and replays
the engine commands it returns. Sessions live in memory only and are tracked
by a bounded ``SessionRegistry``.
"""

import asyncio
import logging
import threading
import uuid
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from core.config import MAX_SESSIONS, get_icon_strategy, get_interactive_rule
from models.map_config import AppConfig
from models.map_state import FeatureRecord, SessionSnapshot
from services.bounds_fitter import fit_to_sources, should_auto_fit
from services.engine import CommandBufferEngine, Point
from services.errors import SessionNotFoundError
from services.feature_picker import FeaturePicker, InfoPanelController
from services.image_provisioner import ImageProvisioner
from services.visibility import VisibilityController, apply_state_to_style

logger = logging.getLogger(__name__)


class MapSession:
    """Layer & interaction controller for one embedded map instance."""

    def __init__(
        self,
        config: AppConfig,
        session_id: Optional[str] = None,
        icon_strategy: Optional[str] = None,
        interactive_rule: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        warnings: Optional[List[str]] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.config = config
        self.icon_strategy = icon_strategy or get_icon_strategy()
        self.interactive_rule = interactive_rule or get_interactive_rule()
        self.client = client
        self.warnings = list(warnings or [])

        self.engine = CommandBufferEngine(config)
        self.visibility = VisibilityController(config, self.engine)
        self.panel = InfoPanelController()
        self.picker = FeaturePicker(config, self.engine, self.panel, self.interactive_rule)
        self.images = ImageProvisioner(config, self.engine, client)

        self._style: Optional[Dict[str, Any]] = None
        self._style_loaded = False
        self._icon_swap: Optional["asyncio.Task[List[str]]"] = None

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> Dict[str, Any]:
        """Prepare the style for map creation and initialize layer visibility.

        With the placeholder strategy the real icons start loading here, while
        the page is still creating the map.

        Returns:
            The style document the engine should be created with
        """
        style = self.config.to_style()
        if self.icon_strategy == "placeholder":
            self.images.prepare_style(style)
            self.images.begin_provisioning()
        state = self.visibility.initialize()
        self._style = apply_state_to_style(self.config, state, style)
        logger.info(
            f"Started embed session {self.session_id} "
            f"(icons: {self.icon_strategy}, interactive: {self.interactive_rule})"
        )
        return style

    @property
    def style(self) -> Dict[str, Any]:
        if self._style is None:
            return self.start()
        return self._style

    @property
    def style_loaded(self) -> bool:
        return self._style_loaded

    async def on_style_load(
        self,
        zoom: Optional[float] = None,
        viewport: Optional[Tuple[float, float]] = None,
        resident_sources: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        """The engine finished its first style load.

        Applies the active background's zoom range and auto-frames the view
        when the document has no explicit one. With the placeholder strategy the
        icon swap-back is scheduled in the background; ``icons_restored`` waits
        for it.
        """
        if zoom is not None:
            self.engine.update_camera(zoom)
        if resident_sources:
            self.engine.load_resident_sources(resident_sources)

        self.visibility.enforce_zoom_constraints()

        if self.icon_strategy == "placeholder" and (
            self._icon_swap is None or self._icon_swap.done()
        ):
            self._icon_swap = asyncio.ensure_future(self.images.restore_icons())

        if should_auto_fit(self.config):
            await fit_to_sources(self.config, self.engine, viewport, self.client)

        self._style_loaded = True

    async def icons_restored(self) -> List[str]:
        """Wait for the placeholder swap-back scheduled on style load.

        Returns:
            Ids of the layers pointed back at their real icon
        """
        if self._icon_swap is None:
            return []
        task = self._icon_swap
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._icon_swap is task:
                self._icon_swap = None

    # -- layer chooser -----------------------------------------------------

    def select_background(self, background_id: str, zoom: Optional[float] = None) -> None:
        if zoom is not None:
            self.engine.update_camera(zoom)
        self.visibility.set_active_background(background_id)
        self.panel.close_layer_chooser()

    def set_data_layer_visible(self, data_layer_id: str, visible: bool) -> None:
        self.visibility.set_data_layer_visible(data_layer_id, visible)

    def toggle_layer_chooser(self) -> bool:
        return self.panel.toggle_layer_chooser()

    # -- pointer events ----------------------------------------------------

    def pointer_move(self, point: Point, features: Iterable[Dict[str, Any]]) -> bool:
        self.engine.load_hits(features)
        return self.picker.on_pointer_move(point)

    def click(self, point: Point, features: Iterable[Dict[str, Any]]) -> Optional[FeatureRecord]:
        self.engine.load_hits(features)
        return self.picker.on_click(point)

    def drag_start(self) -> None:
        self.panel.on_drag_start()

    def double_click(self) -> None:
        self.panel.on_double_click()

    def close_info_panel(self) -> None:
        self.panel.hide()

    # -- engine notifications ----------------------------------------------

    async def image_missing(self, image_id: str) -> bool:
        return await self.images.handle_image_missing(image_id)

    # -- output ------------------------------------------------------------

    def snapshot(self, drain: bool = True) -> SessionSnapshot:
        """Current state plus the engine commands recorded since the last snapshot."""
        commands = self.engine.drain() if drain else self.engine.pending_commands
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.visibility.get_state(),
            zoom_range=self.visibility.zoom_range,
            ui=self.panel.ui.model_copy(deep=True),
            commands=commands,
        )


class SessionRegistry:
    """Bounded in-memory store of live sessions; the oldest is evicted first."""

    def __init__(self, max_sessions: int = MAX_SESSIONS):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, MapSession]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, session: MapSession) -> MapSession:
        with self._lock:
            self._sessions[session.session_id] = session
            self._sessions.move_to_end(session.session_id)
            while len(self._sessions) > self.max_sessions:
                evicted_id, _ = self._sessions.popitem(last=False)
                logger.info(f"Evicted embed session {evicted_id} (limit {self.max_sessions})")
        return session

    def get(self, session_id: str) -> MapSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(f"Embed session '{session_id}' not found")
            self._sessions.move_to_end(session_id)
            return session

    def remove(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(f"Embed session '{session_id}' not found")
        logger.info(f"Closed embed session {session_id}")

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Get the process-wide session registry."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
