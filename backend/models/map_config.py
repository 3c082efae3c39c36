"""
Embed Configuration Models

Defines the schema of the configuration document that drives an embedded map.
The document is a MapLibre style (``sources``, ``layers``, ...) extended with a
``customUi`` block describing the UI chrome and the selectable layers, and an
optional ``customImageResources`` table of icons.

The document is fetched at runtime and validated against these models before
any controller runs.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PanelConfig(BaseModel):
    """Presentation of the feature info side panel."""

    background_color: str = Field("#ffffff", alias="backgroundColor")
    width: str = Field("350px", description="CSS width of the panel")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ControlsConfig(BaseModel):
    """Which map controls are shown."""

    zoom: bool = False
    scale: bool = False
    layer_chooser: bool = Field(False, alias="layerChooser")
    fullscreen: bool = False
    attribution: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class BackgroundLayerConfig(BaseModel):
    """One selectable (mutually exclusive) background option."""

    id: str = Field(..., description="Id of the style layer shown for this background")
    name: str
    min_zoom: Optional[float] = Field(None, alias="minZoom")
    max_zoom: Optional[float] = Field(None, alias="maxZoom")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DataLayerConfig(BaseModel):
    """One independently toggleable overlay.

    A data layer may fan out to several style layers (e.g. a casing and a fill);
    when ``layerIds`` is omitted the data layer controls the style layer with
    its own ``id``, and when ``id`` is omitted it is taken from the first
    entry of ``layerIds``.
    """

    id: Optional[str] = None
    name: str
    layer_ids: List[str] = Field(default_factory=list, alias="layerIds")
    visible: Optional[bool] = Field(
        None, description="Initial visibility; falls back to the style layer visibility"
    )
    interactive: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="after")
    def _default_layer_ids(self) -> "DataLayerConfig":
        if not self.id:
            if not self.layer_ids:
                raise ValueError("Data layer needs an id or layerIds")
            self.id = self.layer_ids[0]
        if not self.layer_ids:
            self.layer_ids = [self.id]
        return self


class GlobalZoomClamp(BaseModel):
    """Document-wide zoom bounds. Only ever narrows a layer-specific bound."""

    min_zoom: Optional[float] = None
    max_zoom: Optional[float] = None


class CustomUiConfig(BaseModel):
    """The ``customUi`` block of the configuration document."""

    panel: PanelConfig = Field(default_factory=PanelConfig)
    controls: ControlsConfig = Field(default_factory=ControlsConfig)
    background_layers: List[BackgroundLayerConfig] = Field(
        default_factory=list, alias="backgroundLayers"
    )
    data_layers: List[DataLayerConfig] = Field(default_factory=list, alias="dataLayers")
    global_min_zoom: Optional[float] = Field(None, alias="globalMinZoom")
    global_max_zoom: Optional[float] = Field(None, alias="globalMaxZoom")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="after")
    def _check_global_clamp(self) -> "CustomUiConfig":
        if (
            self.global_min_zoom is not None
            and self.global_max_zoom is not None
            and self.global_min_zoom > self.global_max_zoom
        ):
            raise ValueError(
                f"globalMinZoom ({self.global_min_zoom}) is greater than "
                f"globalMaxZoom ({self.global_max_zoom})"
            )
        return self

    @property
    def global_clamp(self) -> GlobalZoomClamp:
        return GlobalZoomClamp(min_zoom=self.global_min_zoom, max_zoom=self.global_max_zoom)


class ImageResource(BaseModel):
    """An icon that can be registered with the rendering engine on demand."""

    id: str
    url: str
    pixel_ratio: float = Field(1.0, alias="pixelRatio", gt=0)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StyleLayer(BaseModel):
    """A MapLibre style layer. Only the fields the controller reads are typed."""

    id: str
    type: str
    source: Optional[str] = None
    layout: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    @property
    def visibility(self) -> str:
        return self.layout.get("visibility", "visible")

    @property
    def is_visible(self) -> bool:
        return self.visibility != "none"


class AppConfig(BaseModel):
    """
    Root configuration document.

    Example file: map-config.json
    ```json
    {
        "version": 8,
        "title": "Hiking map",
        "sources": {"osm": {"type": "raster", "tiles": ["..."], "maxzoom": 19}},
        "layers": [{"id": "osm", "type": "raster", "source": "osm"}],
        "customUi": {
            "panel": {"backgroundColor": "#fff", "width": "350px"},
            "controls": {"zoom": true, "layerChooser": true},
            "backgroundLayers": [{"id": "osm", "name": "Streets"}],
            "dataLayers": [],
            "globalMaxZoom": 18
        }
    }
    ```
    """

    title: Optional[str] = None
    center: Optional[Tuple[float, float]] = None
    zoom: Optional[float] = None
    bounds: Optional[Tuple[float, float, float, float]] = None
    sources: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    layers: List[StyleLayer] = Field(default_factory=list)
    custom_ui: CustomUiConfig = Field(default_factory=CustomUiConfig, alias="customUi")
    custom_image_resources: List[ImageResource] = Field(
        default_factory=list, alias="customImageResources"
    )

    # The rest of the style document (version, glyphs, sprite, ...) is passed
    # through to the rendering engine untouched.
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def layer_ids(self) -> List[str]:
        return [layer.id for layer in self.layers]

    def find_layer(self, layer_id: str) -> Optional[StyleLayer]:
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def source_for_layer(self, layer_id: str) -> Dict[str, Any]:
        """Return the source definition backing a style layer ({} if none)."""
        layer = self.find_layer(layer_id)
        if layer is None or not layer.source:
            return {}
        return self.sources.get(layer.source) or {}

    def background_layer(self, background_id: str) -> Optional[BackgroundLayerConfig]:
        for background in self.custom_ui.background_layers:
            if background.id == background_id:
                return background
        return None

    def data_layer(self, data_layer_id: str) -> Optional[DataLayerConfig]:
        for data_layer in self.custom_ui.data_layers:
            if data_layer.id == data_layer_id:
                return data_layer
        return None

    def image_resource(self, image_id: str) -> Optional[ImageResource]:
        for resource in self.custom_image_resources:
            if resource.id == image_id:
                return resource
        return None

    def has_explicit_view(self) -> bool:
        """True when the document fixes the initial camera (center+zoom or bounds)."""
        if self.bounds is not None:
            return True
        return self.center is not None and self.zoom is not None

    def to_style(self) -> Dict[str, Any]:
        """Serialize back to the document shape the rendering engine consumes."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConfigValidationResult(BaseModel):
    """Result of validating an embed configuration."""

    valid: bool = Field(..., description="Whether the config is valid and usable")
    config: Optional[AppConfig] = Field(None, description="The validated config (if valid)")
    warnings: List[str] = Field(
        default_factory=list,
        description="Non-fatal warnings (dangling layer references, duplicate icons, etc.)",
    )
    errors: List[str] = Field(
        default_factory=list,
        description="Fatal errors that prevent config from being used",
    )
