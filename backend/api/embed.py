"""
Embed API

Endpoints the embedded map page talks to. The page creates a session from its
``config`` parameter, creates the MapLibre map with the returned style, then
forwards engine and user events. Every mutating endpoint answers with the
session state and the engine commands the page must replay, in order.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, HTTPException, Response, status
from pydantic import BaseModel, Field

from models.map_state import SessionSnapshot
from services.config_loader import load_config
from services.errors import (
    ConfigurationFetchError,
    ConfigurationMissingError,
    SessionNotFoundError,
    UnknownLayerError,
)
from services.feature_picker import interactive_layer_ids
from services.map_session import MapSession, get_session_registry
from services.ui_controls import (
    control_plan,
    fullscreen_url,
    initial_view,
    parse_cooperative_gestures,
    parse_mobile_cooperative_gestures,
)

router = APIRouter(prefix="/embed", tags=["embed"])

logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    config_url: Optional[str] = Field(None, description="Value of the page's `config` parameter")
    page_url: Optional[str] = Field(None, description="URL of the embedding page")
    cooperative_gestures: Optional[str] = Field(
        None, description="Raw `cooperativeGestures` query value"
    )
    mgc: Optional[str] = Field(None, description="Raw `mgc` (mobile cooperative gestures) value")


class CreateSessionResponse(BaseModel):
    session_id: str
    title: Optional[str] = None
    style: Dict[str, Any]
    initial_view: Dict[str, Any]
    controls: List[Dict[str, Any]]
    panel: Dict[str, Any]
    interactive_layer_ids: List[str]
    cooperative_gestures: bool
    mobile_cooperative_gestures: bool
    fullscreen_url: Optional[str] = None
    icon_strategy: str
    warnings: List[str] = Field(default_factory=list)
    snapshot: SessionSnapshot


class StyleLoadRequest(BaseModel):
    zoom: Optional[float] = None
    viewport: Optional[Tuple[float, float]] = Field(None, description="(width, height) in pixels")
    resident_sources: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="GeoJSON the engine already holds, by source id"
    )


class BackgroundRequest(BaseModel):
    layer_id: str
    zoom: Optional[float] = None


class DataLayerRequest(BaseModel):
    visible: bool


class RenderedFeature(BaseModel):
    layer_id: str
    source: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class PointerEvent(BaseModel):
    point: Tuple[float, float]
    features: List[RenderedFeature] = Field(
        default_factory=list, description="Engine hit-test result, topmost first"
    )


class ImageMissingRequest(BaseModel):
    image_id: str


def _get_session(session_id: str) -> MapSession:
    try:
        return get_session_registry().get(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/sessions", response_model=CreateSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(payload: CreateSessionRequest) -> CreateSessionResponse:
    """Fetch and validate the configuration and start a controller for it."""
    try:
        result = await load_config(payload.config_url)
    except ConfigurationMissingError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ConfigurationFetchError as e:
        logger.error(f"{e.message} {e.technical_details}".strip())
        raise HTTPException(status_code=502, detail=e.message)

    config = result.config
    session = MapSession(config, warnings=result.warnings)
    style = session.start()
    get_session_registry().add(session)

    return CreateSessionResponse(
        session_id=session.session_id,
        title=config.title,
        style=style,
        initial_view=initial_view(config),
        controls=control_plan(config),
        panel=config.custom_ui.panel.model_dump(by_alias=True),
        interactive_layer_ids=interactive_layer_ids(config, session.interactive_rule),
        cooperative_gestures=parse_cooperative_gestures(payload.cooperative_gestures),
        mobile_cooperative_gestures=parse_mobile_cooperative_gestures(payload.mgc),
        fullscreen_url=fullscreen_url(payload.page_url) if payload.page_url else None,
        icon_strategy=session.icon_strategy,
        warnings=result.warnings,
        snapshot=session.snapshot(),
    )


@router.get("/sessions/{session_id}", response_model=SessionSnapshot)
async def get_session_state(session_id: str) -> SessionSnapshot:
    """Current state without draining pending commands."""
    return _get_session(session_id).snapshot(drain=False)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str) -> Response:
    try:
        get_session_registry().remove(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{session_id}/load", response_model=SessionSnapshot)
async def style_loaded(session_id: str, payload: StyleLoadRequest) -> SessionSnapshot:
    """Engine finished loading the style: zoom limits and auto-fit.

    The placeholder icon swap-back keeps running after this returns; its
    commands arrive with a later response or from ``images/restore``.
    """
    session = _get_session(session_id)
    await session.on_style_load(
        zoom=payload.zoom,
        viewport=payload.viewport,
        resident_sources=payload.resident_sources,
    )
    return session.snapshot()


@router.post("/sessions/{session_id}/background", response_model=SessionSnapshot)
async def select_background(session_id: str, payload: BackgroundRequest) -> SessionSnapshot:
    session = _get_session(session_id)
    try:
        session.select_background(payload.layer_id, payload.zoom)
    except UnknownLayerError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return session.snapshot()


@router.post("/sessions/{session_id}/data-layers/{data_layer_id}", response_model=SessionSnapshot)
async def toggle_data_layer(
    session_id: str, data_layer_id: str, payload: DataLayerRequest
) -> SessionSnapshot:
    session = _get_session(session_id)
    try:
        session.set_data_layer_visible(data_layer_id, payload.visible)
    except UnknownLayerError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return session.snapshot()


@router.post("/sessions/{session_id}/pointer-move", response_model=SessionSnapshot)
async def pointer_move(session_id: str, payload: PointerEvent) -> SessionSnapshot:
    session = _get_session(session_id)
    session.pointer_move(payload.point, [f.model_dump() for f in payload.features])
    return session.snapshot()


@router.post("/sessions/{session_id}/click", response_model=SessionSnapshot)
async def click(session_id: str, payload: PointerEvent) -> SessionSnapshot:
    session = _get_session(session_id)
    session.click(payload.point, [f.model_dump() for f in payload.features])
    return session.snapshot()


@router.post("/sessions/{session_id}/drag-start", response_model=SessionSnapshot)
async def drag_start(session_id: str) -> SessionSnapshot:
    session = _get_session(session_id)
    session.drag_start()
    return session.snapshot()


@router.post("/sessions/{session_id}/dblclick", response_model=SessionSnapshot)
async def double_click(session_id: str) -> SessionSnapshot:
    session = _get_session(session_id)
    session.double_click()
    return session.snapshot()


@router.post("/sessions/{session_id}/layer-chooser/toggle", response_model=SessionSnapshot)
async def toggle_layer_chooser(session_id: str) -> SessionSnapshot:
    session = _get_session(session_id)
    session.toggle_layer_chooser()
    return session.snapshot()


@router.post("/sessions/{session_id}/info-panel/close", response_model=SessionSnapshot)
async def close_info_panel(session_id: str) -> SessionSnapshot:
    session = _get_session(session_id)
    session.close_info_panel()
    return session.snapshot()


@router.post("/sessions/{session_id}/images/missing", response_model=SessionSnapshot)
async def image_missing(session_id: str, payload: ImageMissingRequest) -> SessionSnapshot:
    """Engine reported a missing icon; load and register it if it is configured."""
    session = _get_session(session_id)
    await session.image_missing(payload.image_id)
    return session.snapshot()


@router.post("/sessions/{session_id}/images/restore", response_model=SessionSnapshot)
async def icons_restored(session_id: str) -> SessionSnapshot:
    """Wait for the placeholder icon swap-back started on style load."""
    session = _get_session(session_id)
    await session.icons_restored()
    return session.snapshot()
