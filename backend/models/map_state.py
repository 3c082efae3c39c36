"""Pydantic models for live embed state and rendering-engine commands."""

from typing import List, Literal, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field
from typing_extensions import Annotated


class VisibilityState(BaseModel):
    """Which background and which data layers are currently shown."""

    active_background_id: Optional[str] = None
    visible_data_layer_ids: Set[str] = Field(default_factory=set)


class ZoomRange(BaseModel):
    """Effective zoom limits for the active background."""

    min_zoom: Optional[float] = None
    max_zoom: Optional[float] = None

    def clamp(self, zoom: float) -> float:
        if self.max_zoom is not None and zoom > self.max_zoom:
            return self.max_zoom
        if self.min_zoom is not None and zoom < self.min_zoom:
            return self.min_zoom
        return zoom


class FeatureRecord(BaseModel):
    """Display data projected from a clicked feature."""

    title: Optional[str] = None
    description: Optional[str] = None  # raw markup, injected as-is
    image_url: Optional[str] = None
    image_size: Optional[Tuple[int, int]] = None

    @property
    def has_content(self) -> bool:
        return bool(self.title or self.description or self.image_url)

    @property
    def aspect_ratio(self) -> Optional[str]:
        """CSS aspect-ratio value for the panel image, e.g. ``"800 / 600"``."""
        if not self.image_size:
            return None
        return f"{self.image_size[0]} / {self.image_size[1]}"


class UiState(BaseModel):
    """Presentation state the browser renders (panels, chooser, cursor)."""

    layer_chooser_open: bool = False
    info_panel_visible: bool = False
    info_panel: Optional[FeatureRecord] = None
    cursor: str = ""


# Rendering-engine commands -------------------------------------------------


class SetLayoutPropertyCommand(BaseModel):
    type: Literal["setLayoutProperty"] = "setLayoutProperty"
    layer_id: str
    name: str
    value: Union[str, float, bool, None, List]


class SetZoomBoundsCommand(BaseModel):
    type: Literal["setZoomBounds"] = "setZoomBounds"
    min_zoom: Optional[float] = None
    max_zoom: Optional[float] = None


class ZoomToCommand(BaseModel):
    type: Literal["zoomTo"] = "zoomTo"
    zoom: float


class FitBoundsCommand(BaseModel):
    type: Literal["fitBounds"] = "fitBounds"
    bounds: Tuple[float, float, float, float]  # west, south, east, north
    padding: int


class AddImageCommand(BaseModel):
    type: Literal["addImage"] = "addImage"
    image_id: str
    data_url: str
    pixel_ratio: float = 1.0


class SetCursorCommand(BaseModel):
    type: Literal["setCursor"] = "setCursor"
    cursor: str


EngineCommand = Annotated[
    Union[
        SetLayoutPropertyCommand,
        SetZoomBoundsCommand,
        ZoomToCommand,
        FitBoundsCommand,
        AddImageCommand,
        SetCursorCommand,
    ],
    Field(discriminator="type"),
]


class SessionSnapshot(BaseModel):
    """Response body of every mutating embed endpoint."""

    session_id: str
    state: VisibilityState
    zoom_range: ZoomRange
    ui: UiState
    commands: List[EngineCommand] = Field(default_factory=list)
