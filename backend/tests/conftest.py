import copy
import sys
from pathlib import Path

# Add the backend root directory to Python path first
backend_root = Path(__file__).parent.parent
sys.path.insert(0, str(backend_root))

"""
Pytest configuration and shared fixtures for the embed controller tests.
"""

import httpx
import pytest

from models.map_config import AppConfig
from services.config_loader import validate_config
from services.engine import CommandBufferEngine

TRAILS_URL = "https://data.example.org/trails.geojson"
PEAK_ICON_URL = "https://icons.example.org/peak.png"

SAMPLE_CONFIG = {
    "version": 8,
    "title": "Trail map",
    "sources": {
        "streets": {
            "type": "raster",
            "tiles": ["https://tiles.example.org/streets/{z}/{x}/{y}.png"],
            "minzoom": 2,
            "maxzoom": 19,
        },
        "satellite": {
            "type": "raster",
            "tiles": ["https://tiles.example.org/sat/{z}/{x}/{y}.jpg"],
        },
        "trails": {"type": "geojson", "data": TRAILS_URL},
        "pois": {
            "type": "geojson",
            "data": {
                "type": "FeatureCollection",
                "features": [
                    {
                        "type": "Feature",
                        "geometry": {"type": "Point", "coordinates": [10.0, 46.0]},
                        "properties": {"title": "Summit"},
                    }
                ],
            },
        },
    },
    "layers": [
        {"id": "bg1", "type": "raster", "source": "streets"},
        {"id": "bg2", "type": "raster", "source": "satellite", "layout": {"visibility": "none"}},
        {"id": "trails-line", "type": "line", "source": "trails", "layout": {"visibility": "none"}},
        {
            "id": "pois",
            "type": "symbol",
            "source": "pois",
            "layout": {"icon-image": "peak", "icon-size": 1},
        },
        {"id": "pois-label", "type": "symbol", "source": "pois", "layout": {"icon-image": "marker"}},
    ],
    "customUi": {
        "panel": {"backgroundColor": "#fafafa", "width": "320px"},
        "controls": {"zoom": True, "scale": True, "layerChooser": True},
        "backgroundLayers": [
            {"id": "bg1", "name": "Streets"},
            {"id": "bg2", "name": "Satellite", "maxZoom": 16},
        ],
        "dataLayers": [
            {"id": "trails", "name": "Trails", "layerIds": ["trails-line"], "visible": False},
            {"id": "pois", "name": "Points of interest", "interactive": True},
        ],
        "globalMinZoom": 1,
        "globalMaxZoom": 18,
    },
    "customImageResources": [{"id": "peak", "url": PEAK_ICON_URL, "pixelRatio": 2}],
}

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def sample_config_data():
    """A fresh copy of the sample configuration document."""
    return copy.deepcopy(SAMPLE_CONFIG)


@pytest.fixture
def app_config(sample_config_data) -> AppConfig:
    """The sample configuration, validated."""
    result = validate_config(sample_config_data)
    assert result.valid, result.errors
    return result.config


@pytest.fixture
def engine(app_config) -> CommandBufferEngine:
    """Engine mirror for the sample configuration at zoom 5."""
    return CommandBufferEngine(app_config, zoom=5)


@pytest.fixture
def mock_client():
    """Factory for AsyncClients whose requests are answered by ``handler(request)``."""

    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
