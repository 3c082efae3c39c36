"""Tests for icon provisioning (lazy and placeholder strategies)."""

import asyncio

import httpx
import pytest

from models.map_config import AppConfig
from models.map_state import AddImageCommand, SetLayoutPropertyCommand
from services.engine import CommandBufferEngine
from services.errors import IconLoadError
from services.image_provisioner import PLACEHOLDER_IMAGE_ID, ImageProvisioner

PEAK_ICON_URL = "https://icons.example.org/peak.png"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class CountingHandler:
    """Mock transport handler that counts requests and yields before answering."""

    def __init__(self, status_code=200, content=PNG_BYTES, content_type="image/png"):
        self.calls = 0
        self.status_code = status_code
        self.content = content
        self.content_type = content_type

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        await asyncio.sleep(0.01)
        return httpx.Response(
            self.status_code, content=self.content, headers={"content-type": self.content_type}
        )


class TestLazyStrategy:
    """Icons loaded on the engine's missing-image notification."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_fetch(self, app_config, engine, mock_client):
        handler = CountingHandler()
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            results = await asyncio.gather(
                images.handle_image_missing("peak"), images.handle_image_missing("peak")
            )

        assert results == [True, True]
        assert handler.calls == 1
        added = [c for c in engine.drain() if isinstance(c, AddImageCommand)]
        assert len(added) == 1
        assert added[0].image_id == "peak"
        assert added[0].pixel_ratio == 2
        assert added[0].data_url.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_already_registered_is_not_fetched(self, app_config, engine, mock_client):
        handler = CountingHandler()
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            await images.ensure_loaded("peak")
            await images.ensure_loaded("peak")

        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_unknown_icon_is_ignored(self, app_config, engine, mock_client, caplog):
        handler = CountingHandler()
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            assert await images.handle_image_missing("marker") is False

        assert handler.calls == 0
        assert "not found in customImageResources" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_icon_raises_from_ensure_loaded(self, app_config, engine):
        images = ImageProvisioner(app_config, engine)
        with pytest.raises(IconLoadError):
            await images.ensure_loaded("marker")

    @pytest.mark.asyncio
    async def test_failure_seen_by_every_waiter(self, app_config, engine, mock_client):
        handler = CountingHandler(status_code=404)
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            results = await asyncio.gather(
                images.ensure_loaded("peak"), images.ensure_loaded("peak"), return_exceptions=True
            )

        assert handler.calls == 1
        assert all(isinstance(r, IconLoadError) for r in results)
        assert engine.has_image("peak") is False

    @pytest.mark.asyncio
    async def test_failed_icon_may_be_retried_later(self, app_config, engine, mock_client):
        handler = CountingHandler(status_code=503)
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            assert await images.handle_image_missing("peak") is False

            handler.status_code = 200
            assert await images.handle_image_missing("peak") is True

        assert handler.calls == 2
        assert engine.has_image("peak") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content, content_type",
        [(b"<html></html>", "text/html"), (b"", "image/png")],
    )
    async def test_rejected_payloads(self, app_config, engine, mock_client, content, content_type):
        handler = CountingHandler(content=content, content_type=content_type)
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            assert await images.handle_image_missing("peak") is False

        assert engine.has_image("peak") is False


class TestPlaceholderStrategy:
    """Two-phase icon provisioning."""

    @pytest.mark.unit
    def test_prepare_style_rewrites_custom_icons_only(self, app_config, engine):
        images = ImageProvisioner(app_config, engine)
        style = app_config.to_style()

        images.prepare_style(style)

        layouts = {layer["id"]: layer.get("layout", {}) for layer in style["layers"]}
        assert layouts["pois"]["icon-image"] == PLACEHOLDER_IMAGE_ID
        assert layouts["pois-label"]["icon-image"] == "marker"
        assert images.rewritten_layers == {"pois": "peak"}
        assert engine.has_image(PLACEHOLDER_IMAGE_ID)

    @pytest.mark.unit
    def test_expressions_left_alone(self, app_config, engine):
        images = ImageProvisioner(app_config, engine)
        style = app_config.to_style()
        style["layers"][3]["layout"]["icon-image"] = ["get", "icon"]

        images.prepare_style(style)

        assert images.rewritten_layers == {}

    @pytest.mark.asyncio
    async def test_restore_after_all_loads_settle(self, app_config, engine, mock_client):
        handler = CountingHandler()
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            images.prepare_style(app_config.to_style())
            engine.drain()

            restored = await images.restore_icons()

        commands = engine.drain()
        assert restored == ["pois"]
        assert [type(c) for c in commands] == [AddImageCommand, SetLayoutPropertyCommand]
        assert commands[1] == SetLayoutPropertyCommand(
            layer_id="pois", name="icon-image", value="peak"
        )
        assert images.rewritten_layers == {}

    @pytest.mark.asyncio
    async def test_failed_icon_keeps_placeholder(self, app_config, engine, mock_client):
        handler = CountingHandler(status_code=500)
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            images.prepare_style(app_config.to_style())
            engine.drain()

            restored = await images.restore_icons()

        assert restored == []
        assert engine.drain() == []
        assert images.rewritten_layers == {"pois": "peak"}

    @pytest.mark.asyncio
    async def test_provision_all_settles_every_icon(self, sample_config_data, mock_client):
        sample_config_data["customImageResources"].append(
            {"id": "hut", "url": "https://icons.example.org/hut.png"}
        )
        config = AppConfig.model_validate(sample_config_data)
        engine = CommandBufferEngine(config)

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == PEAK_ICON_URL:
                return httpx.Response(500)
            return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

        async with mock_client(handler) as client:
            outcome = await ImageProvisioner(config, engine, client).provision_all()

        assert outcome == {"peak": False, "hut": True}

    @pytest.mark.asyncio
    async def test_begin_provisioning_starts_loading_before_restore(
        self, app_config, engine, mock_client
    ):
        handler = CountingHandler()
        async with mock_client(handler) as client:
            images = ImageProvisioner(app_config, engine, client)
            images.prepare_style(app_config.to_style())

            assert images.begin_provisioning() is True
            assert images.begin_provisioning() is False
            await asyncio.sleep(0.05)
            assert handler.calls == 1
            assert engine.has_image("peak")

            restored = await images.restore_icons()

        assert restored == ["pois"]
        assert handler.calls == 1

    @pytest.mark.unit
    def test_begin_provisioning_without_event_loop(self, app_config, engine):
        images = ImageProvisioner(app_config, engine)
        images.prepare_style(app_config.to_style())

        assert images.begin_provisioning() is False


class TestUnsafeImageUrls:
    """Icon URLs pointing at local or private hosts are never fetched."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url",
        ["http://localhost/peak.png", "http://127.0.0.1:9000/peak.png", "http://10.1.2.3/peak.png"],
    )
    async def test_missing_image_not_fetched(self, sample_config_data, mock_client, url):
        sample_config_data["customImageResources"][0]["url"] = url
        config = AppConfig.model_validate(sample_config_data)
        engine = CommandBufferEngine(config)
        handler = CountingHandler()

        async with mock_client(handler) as client:
            images = ImageProvisioner(config, engine, client)
            assert await images.handle_image_missing("peak") is False
            with pytest.raises(IconLoadError) as exc:
                await images.ensure_loaded("peak")

        assert exc.value.image_id == "peak"
        assert handler.calls == 0
        assert not engine.has_image("peak")
