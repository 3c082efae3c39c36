"""Effective zoom limits for the active background layer.

A background may declare its own zoom range in ``customUi.backgroundLayers``;
otherwise the backing source's ``minzoom``/``maxzoom`` apply. The document-wide
``globalMinZoom``/``globalMaxZoom`` clamp can only narrow that range.
"""

import logging
from typing import Any, Dict, List, Optional

from models.map_config import AppConfig, BackgroundLayerConfig, GlobalZoomClamp
from models.map_state import EngineCommand, SetZoomBoundsCommand, ZoomRange, ZoomToCommand

logger = logging.getLogger(__name__)


def _as_zoom(value: Any) -> Optional[float]:
    # bool is an int subclass; a stray `true` is not a zoom level
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def resolve(
    background: Optional[BackgroundLayerConfig],
    source: Optional[Dict[str, Any]],
    clamp: GlobalZoomClamp,
) -> ZoomRange:
    """Combine a background's own zoom bounds with the global clamp.

    Args:
        background: The background entry (its minZoom/maxZoom win over the source's)
        source: The style source backing the background layer
        clamp: Document-wide zoom clamp

    Returns:
        The effective zoom range; either bound may be None (unbounded)
    """
    source = source or {}
    global_min = _as_zoom(clamp.min_zoom)
    global_max = _as_zoom(clamp.max_zoom)

    layer_min = _as_zoom(background.min_zoom) if background else None
    if layer_min is None:
        layer_min = _as_zoom(source.get("minzoom"))
    layer_max = _as_zoom(background.max_zoom) if background else None
    if layer_max is None:
        layer_max = _as_zoom(source.get("maxzoom"))

    min_zoom = layer_min if layer_min is not None else global_min
    max_zoom = layer_max if layer_max is not None else global_max
    if global_min is not None:
        min_zoom = max(min_zoom, global_min)
    if global_max is not None:
        max_zoom = min(max_zoom, global_max)

    if min_zoom is not None and max_zoom is not None and min_zoom > max_zoom:
        logger.warning(
            f"Zoom range [{layer_min}, {layer_max}] of background "
            f"'{background.id if background else '?'}' lies outside the global clamp "
            f"[{global_min}, {global_max}] - using the global clamp"
        )
        return ZoomRange(min_zoom=global_min, max_zoom=global_max)

    return ZoomRange(min_zoom=min_zoom, max_zoom=max_zoom)


def resolve_for_background(config: AppConfig, background_id: str) -> ZoomRange:
    """Resolve the zoom range for a configured background layer id."""
    background = config.background_layer(background_id)
    source = config.source_for_layer(background_id)
    return resolve(background, source, config.custom_ui.global_clamp)


def plan_zoom_enforcement(zoom_range: ZoomRange, current_zoom: float) -> List[EngineCommand]:
    """Commands that apply a zoom range and snap the camera back inside it.

    The camera is moved to the nearest bound only when it currently lies outside.
    """
    commands: List[EngineCommand] = [
        SetZoomBoundsCommand(min_zoom=zoom_range.min_zoom, max_zoom=zoom_range.max_zoom)
    ]
    target = zoom_range.clamp(current_zoom)
    if target != current_zoom:
        commands.append(ZoomToCommand(zoom=target))
    return commands
