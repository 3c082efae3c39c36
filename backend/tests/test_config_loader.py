"""
Tests for Embed Configuration Loading and Validation.

Tests cover:
1. Config URL validation (missing, unsupported scheme, local or private host)
2. Fetching over HTTP (success, HTTP errors, invalid JSON)
3. Pydantic model validation (aliases, defaults, global clamp)
4. Dangling layer references are skipped with a warning
5. Duplicate image resources
"""

import httpx
import pytest
from pydantic import ValidationError

from models.map_config import AppConfig, BackgroundLayerConfig, DataLayerConfig, ImageResource
from services.config_loader import (
    fetch_config,
    load_config,
    validate_background_layers,
    validate_config,
    validate_config_url,
    validate_data_layers,
    validate_image_resources,
)
from services.errors import ConfigurationFetchError, ConfigurationMissingError

CONFIG_URL = "https://maps.example.org/config.json"


class TestValidateConfigUrl:
    """Tests for validate_config_url."""

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_url(self, value):
        with pytest.raises(ConfigurationMissingError) as exc:
            validate_config_url(value)
        assert exc.value.message == "Error: The `config` URL parameter is missing."

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["file:///etc/passwd", "ftp://example.org/c.json", "config.json"])
    def test_rejects_non_http_urls(self, value):
        with pytest.raises(ConfigurationFetchError):
            validate_config_url(value)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value",
        [
            "http://127.0.0.1:8000/admin",
            "http://localhost/config.json",
            "http://[::1]/config.json",
            "http://0.0.0.0/config.json",
            "http://10.0.0.5/config.json",
            "http://192.168.1.1/config.json",
        ],
    )
    def test_rejects_local_and_private_hosts(self, value):
        with pytest.raises(ConfigurationFetchError) as exc:
            validate_config_url(value)
        assert "not allowed" in exc.value.message

    @pytest.mark.unit
    def test_strips_whitespace(self):
        assert validate_config_url(f"  {CONFIG_URL} ") == CONFIG_URL


class TestFetchConfig:
    """Tests for fetch_config against a mocked transport."""

    @pytest.mark.asyncio
    async def test_fetch_success(self, sample_config_data, mock_client):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json=sample_config_data)

        async with mock_client(handler) as client:
            data = await fetch_config(CONFIG_URL, client)

        assert requested == [CONFIG_URL]
        assert data["title"] == "Trail map"

    @pytest.mark.asyncio
    async def test_http_error_is_fatal(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationFetchError) as exc:
                await fetch_config(CONFIG_URL, client)

        assert "Failed to fetch config file" in exc.value.message
        assert "Not Found" in exc.value.message

    @pytest.mark.asyncio
    async def test_network_error_is_fatal(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationFetchError) as exc:
                await fetch_config(CONFIG_URL, client)

        assert "connection refused" in exc.value.technical_details

    @pytest.mark.asyncio
    async def test_invalid_json(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="{ not json")

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationFetchError) as exc:
                await fetch_config(CONFIG_URL, client)

        assert "not valid JSON" in exc.value.message

    @pytest.mark.asyncio
    async def test_json_array_rejected(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[1, 2, 3])

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationFetchError):
                await fetch_config(CONFIG_URL, client)

    @pytest.mark.asyncio
    async def test_missing_url_raises_before_fetching(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationMissingError):
                await fetch_config(None, client)

    @pytest.mark.asyncio
    async def test_private_host_rejected_before_fetching(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationFetchError):
                await fetch_config("http://192.168.0.10/config.json", client)


class TestModelValidation:
    """Tests for the AppConfig models."""

    @pytest.mark.unit
    def test_aliases_and_defaults(self, app_config):
        ui = app_config.custom_ui
        assert ui.panel.background_color == "#fafafa"
        assert ui.controls.layer_chooser is True
        assert ui.controls.fullscreen is False
        assert ui.background_layers[1].max_zoom == 16
        assert app_config.custom_image_resources[0].pixel_ratio == 2

    @pytest.mark.unit
    def test_data_layer_defaults_to_own_id(self, app_config):
        assert app_config.data_layer("pois").layer_ids == ["pois"]
        assert app_config.data_layer("trails").layer_ids == ["trails-line"]

    @pytest.mark.unit
    def test_data_layer_id_taken_from_layer_ids(self):
        data_layer = DataLayerConfig.model_validate({"layerIds": ["pois-label"], "name": "Labels"})

        assert data_layer.id == "pois-label"
        assert data_layer.layer_ids == ["pois-label"]

    @pytest.mark.unit
    def test_data_layer_needs_id_or_layer_ids(self):
        with pytest.raises(ValidationError):
            DataLayerConfig.model_validate({"name": "Nothing"})

    @pytest.mark.unit
    def test_config_with_id_less_data_layer_is_valid(self, sample_config_data):
        sample_config_data["customUi"]["dataLayers"].append(
            {"layerIds": ["pois-label"], "name": "Labels"}
        )

        result = validate_config(sample_config_data)

        assert result.valid, result.errors
        assert result.config.data_layer("pois-label").layer_ids == ["pois-label"]

    @pytest.mark.unit
    def test_global_min_above_max_is_fatal(self, sample_config_data):
        sample_config_data["customUi"]["globalMinZoom"] = 12
        sample_config_data["customUi"]["globalMaxZoom"] = 4

        result = validate_config(sample_config_data)

        assert result.valid is False
        assert result.config is None
        assert "globalMinZoom" in result.errors[0]

    @pytest.mark.unit
    def test_non_positive_pixel_ratio_is_fatal(self, sample_config_data):
        sample_config_data["customImageResources"][0]["pixelRatio"] = 0

        result = validate_config(sample_config_data)

        assert result.valid is False

    @pytest.mark.unit
    def test_unknown_style_keys_pass_through(self, sample_config_data):
        sample_config_data["glyphs"] = "https://fonts.example.org/{fontstack}/{range}.pbf"

        config = validate_config(sample_config_data).config
        style = config.to_style()

        assert style["glyphs"] == sample_config_data["glyphs"]
        assert style["version"] == 8
        assert style["customUi"]["backgroundLayers"][0]["id"] == "bg1"
        assert "center" not in style

    @pytest.mark.unit
    def test_explicit_view(self, sample_config_data):
        assert AppConfig.model_validate(sample_config_data).has_explicit_view() is False

        sample_config_data["center"] = [8.5, 47.3]
        assert AppConfig.model_validate(sample_config_data).has_explicit_view() is False

        sample_config_data["zoom"] = 9
        assert AppConfig.model_validate(sample_config_data).has_explicit_view() is True

        del sample_config_data["center"], sample_config_data["zoom"]
        sample_config_data["bounds"] = [5.9, 45.8, 10.5, 47.8]
        assert AppConfig.model_validate(sample_config_data).has_explicit_view() is True


class TestLayerReferences:
    """Dangling customUi references are warnings, not errors."""

    @pytest.mark.unit
    def test_unknown_background_skipped(self):
        backgrounds = [
            BackgroundLayerConfig(id="bg1", name="Streets"),
            BackgroundLayerConfig(id="ghost", name="Ghost"),
        ]

        valid, warnings = validate_background_layers(backgrounds, {"bg1"})

        assert [b.id for b in valid] == ["bg1"]
        assert len(warnings) == 1
        assert "ghost" in warnings[0]

    @pytest.mark.unit
    def test_data_layer_keeps_resolvable_ids(self):
        data_layers = [
            DataLayerConfig(id="roads", name="Roads", layer_ids=["roads-casing", "roads-gone"]),
        ]

        valid, warnings = validate_data_layers(data_layers, {"roads-casing"})

        assert valid[0].layer_ids == ["roads-casing"]
        assert warnings == ["Data layer 'roads' references unknown layer 'roads-gone' - skipping"]

    @pytest.mark.unit
    def test_data_layer_without_valid_ids_skipped(self):
        data_layers = [DataLayerConfig(id="roads", name="Roads", layer_ids=["gone"])]

        valid, warnings = validate_data_layers(data_layers, {"bg1"})

        assert valid == []
        assert len(warnings) == 2

    @pytest.mark.unit
    def test_duplicate_image_keeps_first(self):
        resources = [
            ImageResource(id="peak", url="https://a.example.org/peak.png"),
            ImageResource(id="peak", url="https://b.example.org/peak.png"),
        ]

        valid, warnings = validate_image_resources(resources)

        assert [r.url for r in valid] == ["https://a.example.org/peak.png"]
        assert len(warnings) == 1

    @pytest.mark.unit
    def test_validate_config_collects_warnings(self, sample_config_data):
        sample_config_data["customUi"]["backgroundLayers"].append({"id": "ghost", "name": "Ghost"})

        result = validate_config(sample_config_data)

        assert result.valid is True
        assert [b.id for b in result.config.custom_ui.background_layers] == ["bg1", "bg2"]
        assert any("ghost" in w for w in result.warnings)


class TestLoadConfig:
    """Tests for load_config (fetch + validate)."""

    @pytest.mark.asyncio
    async def test_load_config(self, sample_config_data, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=sample_config_data)

        async with mock_client(handler) as client:
            result = await load_config(CONFIG_URL, client)

        assert result.valid is True
        assert result.config.title == "Trail map"
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_schema_error_raises(self, sample_config_data, mock_client):
        sample_config_data["layers"] = "not a list"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=sample_config_data)

        async with mock_client(handler) as client:
            with pytest.raises(ConfigurationFetchError) as exc:
                await load_config(CONFIG_URL, client)

        assert exc.value.message.startswith("Error initializing application")
