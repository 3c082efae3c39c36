"""Rendering-engine boundary.

The controller never renders anything itself. It talks to the rendering engine
(MapLibre GL in the browser) through the small ``RenderingEngine`` protocol
below. ``CommandBufferEngine`` is the server-side implementation: it mirrors
the engine state the controller needs to read (layout properties, zoom,
registered images, resident source data, the latest hit-test result) and
records every mutation as an ``EngineCommand`` that the browser replays in
order.
"""

import base64
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from models.map_config import AppConfig
from models.map_state import (
    AddImageCommand,
    EngineCommand,
    FitBoundsCommand,
    SetCursorCommand,
    SetLayoutPropertyCommand,
    SetZoomBoundsCommand,
    ZoomToCommand,
)

logger = logging.getLogger(__name__)

Point = Tuple[float, float]
Bounds = Tuple[float, float, float, float]


class RenderingEngine(Protocol):
    """Operations the controller needs from the rendering engine."""

    def get_layout_property(self, layer_id: str, name: str) -> Any: ...

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None: ...

    def set_zoom_bounds(self, min_zoom: Optional[float], max_zoom: Optional[float]) -> None: ...

    def get_zoom(self) -> float: ...

    def zoom_to(self, zoom: float) -> None: ...

    def fit_bounds(self, bounds: Bounds, padding: int) -> None: ...

    def query_rendered_features(
        self, point: Point, layers: Sequence[str]
    ) -> List[Dict[str, Any]]: ...

    def get_source_data(self, source_id: str) -> Optional[Dict[str, Any]]: ...

    def has_image(self, image_id: str) -> bool: ...

    def add_image(
        self, image_id: str, data: bytes, pixel_ratio: float = 1.0, content_type: str = "image/png"
    ) -> None: ...

    def set_cursor(self, cursor: str) -> None: ...


def feature_layer_id(feature: Dict[str, Any]) -> Optional[str]:
    """Layer id of a rendered feature, accepting MapLibre's nested ``layer`` shape."""
    layer_id = feature.get("layer_id")
    if layer_id:
        return layer_id
    layer = feature.get("layer") or {}
    return layer.get("id")


class CommandBufferEngine:
    """In-memory engine mirror that records mutations as commands."""

    def __init__(self, config: AppConfig, zoom: Optional[float] = None):
        self._layout: Dict[str, Dict[str, Any]] = {
            layer.id: dict(layer.layout) for layer in config.layers
        }
        self._zoom: float = zoom if zoom is not None else (config.zoom or 0.0)
        self.min_zoom: Optional[float] = None
        self.max_zoom: Optional[float] = None
        self._images: Dict[str, float] = {}
        self._sources: Dict[str, Dict[str, Any]] = {}
        self._hits: List[Dict[str, Any]] = []
        self._commands: List[EngineCommand] = []

    # -- state pushed in from the browser ---------------------------------

    def update_camera(self, zoom: float) -> None:
        self._zoom = zoom

    def load_resident_sources(self, sources: Dict[str, Dict[str, Any]]) -> None:
        """Record GeoJSON the browser engine already parsed, keyed by source id."""
        self._sources.update(sources)

    def load_hits(self, features: Iterable[Dict[str, Any]]) -> None:
        """Record the engine's hit-test result for the latest pointer event.

        Features are kept in the order the engine returned them (topmost first).
        """
        self._hits = list(features)

    # -- RenderingEngine ---------------------------------------------------

    def get_layout_property(self, layer_id: str, name: str) -> Any:
        layout = self._layout.get(layer_id, {})
        if name == "visibility":
            return layout.get(name, "visible")
        return layout.get(name)

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None:
        self._layout.setdefault(layer_id, {})[name] = value
        self._commands.append(SetLayoutPropertyCommand(layer_id=layer_id, name=name, value=value))

    def set_zoom_bounds(self, min_zoom: Optional[float], max_zoom: Optional[float]) -> None:
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self._commands.append(SetZoomBoundsCommand(min_zoom=min_zoom, max_zoom=max_zoom))

    def get_zoom(self) -> float:
        return self._zoom

    def zoom_to(self, zoom: float) -> None:
        self._zoom = zoom
        self._commands.append(ZoomToCommand(zoom=zoom))

    def fit_bounds(self, bounds: Bounds, padding: int) -> None:
        self._commands.append(FitBoundsCommand(bounds=bounds, padding=padding))

    def query_rendered_features(
        self, point: Point, layers: Sequence[str]
    ) -> List[Dict[str, Any]]:
        wanted = set(layers)
        if not wanted:
            return []
        return [feature for feature in self._hits if feature_layer_id(feature) in wanted]

    def get_source_data(self, source_id: str) -> Optional[Dict[str, Any]]:
        return self._sources.get(source_id)

    def has_image(self, image_id: str) -> bool:
        return image_id in self._images

    def add_image(
        self, image_id: str, data: bytes, pixel_ratio: float = 1.0, content_type: str = "image/png"
    ) -> None:
        if image_id in self._images:
            # MapLibre errors on duplicate addImage; the mirror refuses it the same way.
            raise ValueError(f"An image with the id '{image_id}' already exists")
        self._images[image_id] = pixel_ratio
        encoded = base64.b64encode(data).decode("ascii")
        self._commands.append(
            AddImageCommand(
                image_id=image_id,
                data_url=f"data:{content_type};base64,{encoded}",
                pixel_ratio=pixel_ratio,
            )
        )
        logger.debug(f"Registered image '{image_id}' ({len(data)} bytes)")

    def set_cursor(self, cursor: str) -> None:
        self._commands.append(SetCursorCommand(cursor=cursor))

    # -- command buffer ----------------------------------------------------

    @property
    def pending_commands(self) -> List[EngineCommand]:
        return list(self._commands)

    def drain(self) -> List[EngineCommand]:
        """Return and clear the commands recorded since the last drain."""
        commands, self._commands = self._commands, []
        return commands


def apply_commands(engine: RenderingEngine, commands: Iterable[EngineCommand]) -> None:
    """Apply planned commands to the engine back-to-back, without suspending."""
    for command in commands:
        if isinstance(command, SetLayoutPropertyCommand):
            engine.set_layout_property(command.layer_id, command.name, command.value)
        elif isinstance(command, SetZoomBoundsCommand):
            engine.set_zoom_bounds(command.min_zoom, command.max_zoom)
        elif isinstance(command, ZoomToCommand):
            engine.zoom_to(command.zoom)
        elif isinstance(command, FitBoundsCommand):
            engine.fit_bounds(command.bounds, command.padding)
        elif isinstance(command, SetCursorCommand):
            engine.set_cursor(command.cursor)
        else:
            raise TypeError(f"Unsupported planned command: {command!r}")
