"""Auto-framing: fit the camera to the extent of all GeoJSON sources.

Used on style load when the configuration fixes neither ``center``+``zoom`` nor
``bounds``. Source data already resident in the rendering engine is reused;
URL sources that are not resident are fetched concurrently. A failing source
is logged and left out of the envelope without affecting the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from shapely.errors import ShapelyError
from shapely.geometry import shape

from core.config import (
    FIT_PADDING_FRACTION,
    FIT_PADDING_PX,
    RESOURCE_FETCH_TIMEOUT,
    USER_AGENT,
)
from models.map_config import AppConfig
from services.engine import RenderingEngine
from services.errors import GeometryFetchError, UnsafeUrlError
from services.url_guard import validate_url

logger = logging.getLogger(__name__)


@dataclass
class GeometryEnvelope:
    """Axis-aligned bounding rectangle in lng/lat. Starts empty, only grows."""

    west: Optional[float] = None
    south: Optional[float] = None
    east: Optional[float] = None
    north: Optional[float] = None

    def is_empty(self) -> bool:
        return self.west is None

    def extend(self, lng: float, lat: float) -> None:
        self.extend_bounds(lng, lat, lng, lat)

    def extend_bounds(self, west: float, south: float, east: float, north: float) -> None:
        if self.is_empty():
            self.west, self.south, self.east, self.north = west, south, east, north
            return
        self.west = min(self.west, west)
        self.south = min(self.south, south)
        self.east = max(self.east, east)
        self.north = max(self.north, north)

    def extend_geometry(self, geometry: Optional[Dict[str, Any]]) -> None:
        """Fold any GeoJSON geometry (multi-part and collections included) in."""
        if not geometry:
            return
        try:
            geom = shape(geometry)
        except (ShapelyError, ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
            logger.debug(f"Skipping unreadable geometry of type {type(geometry).__name__}: {e}")
            return
        if geom.is_empty:
            return
        self.extend_bounds(*geom.bounds)

    def union(self, other: "GeometryEnvelope") -> "GeometryEnvelope":
        merged = GeometryEnvelope(self.west, self.south, self.east, self.north)
        if not other.is_empty():
            merged.extend_bounds(other.west, other.south, other.east, other.north)
        return merged

    def to_bounds(self) -> Tuple[float, float, float, float]:
        if self.is_empty():
            raise ValueError("Empty envelope has no bounds")
        return (self.west, self.south, self.east, self.north)


def _iter_geometries(geojson: Dict[str, Any]) -> Iterable[Optional[Dict[str, Any]]]:
    kind = geojson.get("type")
    if kind == "FeatureCollection":
        for feature in geojson.get("features") or []:
            if isinstance(feature, dict):
                yield feature.get("geometry")
    elif kind == "Feature":
        yield geojson.get("geometry")
    elif kind:
        yield geojson


def compute_envelope(geojsons: Iterable[Dict[str, Any]]) -> GeometryEnvelope:
    """Envelope over every coordinate of every feature in the given GeoJSON documents."""
    envelope = GeometryEnvelope()
    for geojson in geojsons:
        if not isinstance(geojson, dict):
            continue
        for geometry in _iter_geometries(geojson):
            envelope.extend_geometry(geometry)
    return envelope


def should_auto_fit(config: AppConfig) -> bool:
    return not config.has_explicit_view() and bool(config.sources)


def fit_padding(viewport: Optional[Tuple[float, float]] = None) -> int:
    """Padding in pixels: 10% of the viewport's shorter side, or the fixed fallback."""
    if viewport and min(viewport) > 0:
        return max(1, round(min(viewport) * FIT_PADDING_FRACTION))
    return max(1, FIT_PADDING_PX)


def geojson_sources(config: AppConfig) -> List[Tuple[str, Any]]:
    """Snapshot of (source id, data) for every GeoJSON source."""
    return [
        (name, source.get("data"))
        for name, source in config.sources.items()
        if source.get("type") == "geojson" and source.get("data") is not None
    ]


async def fetch_geojson(
    source_id: str, url: str, client: Optional[httpx.AsyncClient] = None
) -> Dict[str, Any]:
    """Fetch and parse a GeoJSON document.

    Raises:
        GeometryFetchError: On network, HTTP status or JSON errors, or when the URL
            targets a local or private-network host
    """
    try:
        url = validate_url(url)
    except UnsafeUrlError as e:
        raise GeometryFetchError(source_id, f"Refusing to fetch GeoJSON for '{source_id}'", e.message)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=RESOURCE_FETCH_TIMEOUT) as own_client:
                response = await _get_geojson(own_client, url)
        else:
            response = await _get_geojson(client, url)
        data = response.json()
    except httpx.HTTPError as e:
        raise GeometryFetchError(source_id, f"Could not fetch GeoJSON for '{source_id}'", str(e))
    except ValueError as e:
        raise GeometryFetchError(source_id, f"Invalid GeoJSON for '{source_id}'", str(e))

    if not isinstance(data, dict):
        raise GeometryFetchError(source_id, f"GeoJSON for '{source_id}' is not an object")
    return data


async def _get_geojson(client: httpx.AsyncClient, url: str) -> httpx.Response:
    response = await client.get(
        url,
        headers={
            "Accept": "application/json, application/geo+json, */*;q=0.1",
            "User-Agent": USER_AGENT,
        },
    )
    response.raise_for_status()
    return response


async def load_source_geojsons(
    sources: List[Tuple[str, Any]],
    engine: RenderingEngine,
    client: Optional[httpx.AsyncClient] = None,
) -> List[Dict[str, Any]]:
    """Collect GeoJSON for the given sources, preferring engine-resident copies."""
    resolved: List[Dict[str, Any]] = []
    pending = []
    names = []

    for name, data in sources:
        if isinstance(data, dict):
            resolved.append(data)
            continue
        if not isinstance(data, str):
            logger.warning(f"GeoJSON source '{name}' has unsupported data of type {type(data)}")
            continue
        resident = engine.get_source_data(name)
        if isinstance(resident, dict):
            resolved.append(resident)
            continue
        names.append(name)
        pending.append(fetch_geojson(name, data, client))

    results = await asyncio.gather(*pending, return_exceptions=True)
    for name, result in zip(names, results):
        if isinstance(result, GeometryFetchError):
            logger.error(f"{result.message}: {result.technical_details}")
        elif isinstance(result, BaseException):
            logger.error(f"Unexpected error loading GeoJSON source '{name}': {result}")
        else:
            resolved.append(result)

    return resolved


def fit(engine: RenderingEngine, envelope: GeometryEnvelope, padding: int) -> bool:
    """Frame the envelope. Returns False (camera untouched) when it is empty."""
    if envelope.is_empty():
        logger.info("No vector geometry to fit - keeping the configured view")
        return False
    engine.fit_bounds(envelope.to_bounds(), max(1, padding))
    logger.info(f"Fitted view to {envelope.to_bounds()} with {padding}px padding")
    return True


async def fit_to_sources(
    config: AppConfig,
    engine: RenderingEngine,
    viewport: Optional[Tuple[float, float]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> GeometryEnvelope:
    """Fit the camera to all GeoJSON sources. No camera change if nothing was found."""
    sources = geojson_sources(config)
    geojsons = await load_source_geojsons(sources, engine, client)
    envelope = compute_envelope(geojsons)
    fit(engine, envelope, fit_padding(viewport))
    return envelope
