"""Feature hit-testing and the info side panel.

Pointer events are hit-tested against the interactive layer set. A click on a
feature projects its attributes into a ``FeatureRecord`` for the side panel;
a click on empty map dismisses the panel. Map clicks, drags and double clicks
also dismiss the layer chooser, whether or not a feature was hit.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from models.map_config import AppConfig
from models.map_state import FeatureRecord, UiState
from services.engine import Point, RenderingEngine

logger = logging.getLogger(__name__)

# Leading integer, like JavaScript's parseInt
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def interactive_layer_ids(config: AppConfig, rule: str = "flag") -> List[str]:
    """Style layer ids eligible for click-driven detail display.

    Args:
        config: The embed configuration
        rule: "flag" - layers of data layers marked ``interactive``;
              "attributes" - layers of every data layer (features are then
              filtered on carrying title/description/imageUrl)
    """
    layer_ids: List[str] = []
    for data_layer in config.custom_ui.data_layers:
        if rule == "flag" and not data_layer.interactive:
            continue
        for layer_id in data_layer.layer_ids:
            if layer_id not in layer_ids:
                layer_ids.append(layer_id)
    return layer_ids


def _parse_int(text: str) -> Optional[int]:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else None


def parse_image_size(value: Any) -> Optional[Tuple[int, int]]:
    """Parse a ``"W,H"`` attribute. Anything else yields None."""
    if not isinstance(value, str):
        return None
    parts = value.split(",")
    if len(parts) != 2:
        return None
    width, height = _parse_int(parts[0]), _parse_int(parts[1])
    if width is None or height is None:
        return None
    return (width, height)


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def feature_record(properties: Optional[Dict[str, Any]]) -> FeatureRecord:
    """Project feature attributes into panel data. ``description`` is passed through unsanitized."""
    properties = properties or {}
    return FeatureRecord(
        title=_text(properties.get("title")),
        description=_text(properties.get("description")),
        image_url=_text(properties.get("imageUrl")),
        image_size=parse_image_size(properties.get("imageSize")),
    )


class InfoPanelController:
    """Owns the side panel and layer chooser presentation state."""

    def __init__(self):
        self.ui = UiState()

    def show(self, record: FeatureRecord) -> None:
        self.ui.info_panel = record
        self.ui.info_panel_visible = True

    def hide(self) -> None:
        self.ui.info_panel_visible = False

    def toggle_layer_chooser(self) -> bool:
        """Open/close the layer chooser. Opening it hides the info panel."""
        self.ui.layer_chooser_open = not self.ui.layer_chooser_open
        if self.ui.layer_chooser_open:
            self.hide()
        return self.ui.layer_chooser_open

    def close_layer_chooser(self) -> None:
        self.ui.layer_chooser_open = False

    def on_drag_start(self) -> None:
        self.close_layer_chooser()

    def on_double_click(self) -> None:
        self.close_layer_chooser()
        self.hide()


class FeaturePicker:
    """Hit-tests pointer events against the interactive layers."""

    def __init__(
        self,
        config: AppConfig,
        engine: RenderingEngine,
        panel: InfoPanelController,
        rule: str = "flag",
    ):
        self.engine = engine
        self.panel = panel
        self.rule = rule
        self.layer_ids = interactive_layer_ids(config, rule)

    def _hits(self, point: Point) -> List[Dict[str, Any]]:
        if not self.layer_ids:
            return []
        features = self.engine.query_rendered_features(point, self.layer_ids)
        if self.rule == "attributes":
            features = [f for f in features if feature_record(f.get("properties")).has_content]
        return features

    def on_pointer_move(self, point: Point) -> bool:
        """Show the pointer cursor iff a feature is under the pointer."""
        hovering = bool(self._hits(point))
        cursor = "pointer" if hovering else ""
        if cursor != self.panel.ui.cursor:
            self.panel.ui.cursor = cursor
            self.engine.set_cursor(cursor)
        return hovering

    def on_click(self, point: Point) -> Optional[FeatureRecord]:
        """Show the topmost hit feature in the panel, or dismiss the panel."""
        self.panel.close_layer_chooser()

        features = self._hits(point)
        if not features:
            self.panel.hide()
            return None

        # Engine order is paint order, topmost first
        record = feature_record(features[0].get("properties"))
        if not record.has_content:
            logger.debug("Clicked feature carries no title/description/imageUrl")
            self.panel.hide()
            return None

        self.panel.show(record)
        return record
