"""Background/data layer visibility state machine.

Exactly one background layer is shown once the controller is initialized;
data layers toggle independently and may each drive several style layers.
Every change is planned as a pure ``Transition`` (new state plus engine
commands) and then applied to the engine in one synchronous pass, so no
observer sees the old visibility with the new zoom limits or vice versa.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from models.map_config import AppConfig
from models.map_state import EngineCommand, SetLayoutPropertyCommand, VisibilityState, ZoomRange
from services.engine import RenderingEngine, apply_commands
from services.errors import UnknownLayerError
from services.zoom_constraints import plan_zoom_enforcement, resolve_for_background

logger = logging.getLogger(__name__)


@dataclass
class Transition:
    state: VisibilityState
    commands: List[EngineCommand] = field(default_factory=list)
    zoom_range: Optional[ZoomRange] = None


def _visibility(visible: bool) -> str:
    return "visible" if visible else "none"


def initial_background_id(config: AppConfig) -> Optional[str]:
    """First configured background whose style layer is not hidden, else the first one."""
    backgrounds = config.custom_ui.background_layers
    for background in backgrounds:
        layer = config.find_layer(background.id)
        if layer is not None and layer.is_visible:
            return background.id
    return backgrounds[0].id if backgrounds else None


def initial_data_layer_ids(config: AppConfig) -> Set[str]:
    """Data layers visible at startup: explicit flag first, else the style's visibility."""
    visible: Set[str] = set()
    for data_layer in config.custom_ui.data_layers:
        if data_layer.visible is not None:
            if data_layer.visible:
                visible.add(data_layer.id)
            continue
        for layer_id in data_layer.layer_ids:
            layer = config.find_layer(layer_id)
            if layer is not None and layer.is_visible:
                visible.add(data_layer.id)
                break
    return visible


def _background_visibility_commands(config: AppConfig, active_id: str) -> List[EngineCommand]:
    return [
        SetLayoutPropertyCommand(
            layer_id=background.id,
            name="visibility",
            value=_visibility(background.id == active_id),
        )
        for background in config.custom_ui.background_layers
    ]


def _data_layer_commands(config: AppConfig, data_layer_id: str, visible: bool) -> List[EngineCommand]:
    data_layer = config.data_layer(data_layer_id)
    return [
        SetLayoutPropertyCommand(layer_id=layer_id, name="visibility", value=_visibility(visible))
        for layer_id in data_layer.layer_ids
    ]


def plan_background_change(
    config: AppConfig, state: VisibilityState, background_id: str, current_zoom: float
) -> Transition:
    """Show one background, hide every other, and re-apply its zoom range."""
    if config.background_layer(background_id) is None:
        raise UnknownLayerError(f"Unknown background layer '{background_id}'")

    zoom_range = resolve_for_background(config, background_id)
    commands = _background_visibility_commands(config, background_id)
    commands.extend(plan_zoom_enforcement(zoom_range, current_zoom))

    new_state = state.model_copy(update={"active_background_id": background_id})
    return Transition(state=new_state, commands=commands, zoom_range=zoom_range)


def plan_data_layer_change(
    config: AppConfig, state: VisibilityState, data_layer_id: str, visible: bool
) -> Transition:
    """Show or hide every style layer a data layer fans out to."""
    if config.data_layer(data_layer_id) is None:
        raise UnknownLayerError(f"Unknown data layer '{data_layer_id}'")

    visible_ids = set(state.visible_data_layer_ids)
    if visible:
        visible_ids.add(data_layer_id)
    else:
        visible_ids.discard(data_layer_id)

    new_state = state.model_copy(update={"visible_data_layer_ids": visible_ids})
    return Transition(
        state=new_state, commands=_data_layer_commands(config, data_layer_id, visible)
    )


def plan_initial_state(config: AppConfig) -> Transition:
    """Initial visibility, pushed for every configured layer so the engine matches 1:1."""
    active_id = initial_background_id(config)
    visible_ids = initial_data_layer_ids(config)

    commands: List[EngineCommand] = []
    if active_id is not None:
        commands.extend(_background_visibility_commands(config, active_id))
    for data_layer in config.custom_ui.data_layers:
        commands.extend(
            _data_layer_commands(config, data_layer.id, data_layer.id in visible_ids)
        )

    state = VisibilityState(active_background_id=active_id, visible_data_layer_ids=visible_ids)
    return Transition(state=state, commands=commands)


def apply_state_to_style(
    config: AppConfig, state: VisibilityState, style: Dict[str, Any]
) -> Dict[str, Any]:
    """Write a visibility state into a serialized style (modified in place).

    Lets the engine draw its first frame with exactly one background shown.
    """
    wanted: Dict[str, str] = {}
    if state.active_background_id is not None:
        for background in config.custom_ui.background_layers:
            wanted[background.id] = _visibility(background.id == state.active_background_id)
    for data_layer in config.custom_ui.data_layers:
        for layer_id in data_layer.layer_ids:
            wanted[layer_id] = _visibility(data_layer.id in state.visible_data_layer_ids)

    for layer in style.get("layers", []):
        value = wanted.get(layer.get("id"))
        if value is not None:
            layout = layer.get("layout") or {}
            layout["visibility"] = value
            layer["layout"] = layout
    return style


class VisibilityController:
    """Sole writer of layout visibility and zoom bounds for one map instance."""

    def __init__(self, config: AppConfig, engine: RenderingEngine):
        self.config = config
        self.engine = engine
        self._state = VisibilityState()
        self._zoom_range = ZoomRange()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def zoom_range(self) -> ZoomRange:
        return self._zoom_range

    def get_state(self) -> VisibilityState:
        return self._state.model_copy(deep=True)

    def initialize(self) -> VisibilityState:
        """Derive the startup state from the configuration and push it to the engine."""
        transition = plan_initial_state(self.config)
        apply_commands(self.engine, transition.commands)
        self._state = transition.state
        self._initialized = True
        if self._state.active_background_id is None:
            logger.info("No background layers configured")
        else:
            logger.info(f"Initial background: '{self._state.active_background_id}'")
        return self.get_state()

    def enforce_zoom_constraints(self) -> ZoomRange:
        """Re-apply the active background's zoom range (e.g. once the style has loaded)."""
        active_id = self._state.active_background_id
        if active_id is None:
            return self._zoom_range
        self._zoom_range = resolve_for_background(self.config, active_id)
        apply_commands(
            self.engine, plan_zoom_enforcement(self._zoom_range, self.engine.get_zoom())
        )
        return self._zoom_range

    def set_active_background(self, background_id: str) -> VisibilityState:
        transition = plan_background_change(
            self.config, self._state, background_id, self.engine.get_zoom()
        )
        apply_commands(self.engine, transition.commands)
        self._state = transition.state
        self._zoom_range = transition.zoom_range
        self._initialized = True
        logger.debug(
            f"Background '{background_id}' active, zoom range "
            f"[{self._zoom_range.min_zoom}, {self._zoom_range.max_zoom}]"
        )
        return self.get_state()

    def set_data_layer_visible(self, data_layer_id: str, visible: bool) -> VisibilityState:
        transition = plan_data_layer_change(self.config, self._state, data_layer_id, visible)
        apply_commands(self.engine, transition.commands)
        self._state = transition.state
        return self.get_state()
