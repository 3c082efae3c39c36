"""Map chrome derived from ``customUi.controls`` and the embed page URL."""

from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from models.map_config import AppConfig

COOPERATIVE_GESTURES_PARAM = "cooperativeGestures"
MOBILE_COOPERATIVE_GESTURES_PARAM = "mgc"

_TRUTHY = {"true", "1", "y", "yes"}
_FALSY = {"false", "0", "n", "no"}


def parse_cooperative_gestures(value: Optional[str]) -> bool:
    """``cooperativeGestures`` query value: on only for an explicit truthy value."""
    if not value:
        return False
    return value.strip().lower() in _TRUTHY


def parse_mobile_cooperative_gestures(value: Optional[str]) -> bool:
    """``mgc`` query value: on unless explicitly switched off."""
    if not value:
        return True
    return value.strip().lower() not in _FALSY


def fullscreen_url(page_url: str) -> str:
    """URL opened by the fullscreen button: the same page minus gesture parameters."""
    parsed = urlparse(page_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in (COOPERATIVE_GESTURES_PARAM, MOBILE_COOPERATIVE_GESTURES_PARAM)
    ]
    return urlunparse(parsed._replace(query=urlencode(query)))


def control_plan(config: AppConfig) -> List[Dict[str, Any]]:
    """Controls to add to the map, in order, with their position and options."""
    controls = config.custom_ui.controls
    plan: List[Dict[str, Any]] = []
    if controls.scale:
        plan.append({"control": "scale", "position": "bottom-right", "options": {"unit": "metric"}})
    if controls.zoom:
        plan.append(
            {"control": "navigation", "position": "top-left", "options": {"showCompass": False}}
        )
    if controls.attribution:
        plan.append(
            {"control": "attribution", "position": "bottom-left", "options": {"compact": False}}
        )
    if controls.fullscreen:
        plan.append({"control": "fullscreen", "position": "top-left", "options": {"title": "See larger"}})
    if controls.layer_chooser:
        plan.append({"control": "layerChooser", "position": "top-right", "options": {"title": "Layers"}})
    return plan


def initial_view(config: AppConfig) -> Dict[str, Any]:
    """Camera options for map creation (only the ones the document sets)."""
    view: Dict[str, Any] = {}
    if config.center is not None:
        view["center"] = list(config.center)
    if config.zoom is not None:
        view["zoom"] = config.zoom
    if config.bounds is not None:
        view["bounds"] = list(config.bounds)
    return view
