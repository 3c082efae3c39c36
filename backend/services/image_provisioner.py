"""Icon provisioning for symbol layers.

Icons listed in ``customImageResources`` are fetched and registered with the
rendering engine under their id. Two strategies exist, selected per deployment:

- lazy: the engine reports a missing image and ``handle_image_missing`` loads
  it; the engine re-renders on its own once the image is registered.
- placeholder: phase 1 (``prepare_style``) points every symbol layer using a
  custom icon at a shared 1x1 transparent placeholder before the map is
  created; phase 2 (``restore_icons``) loads the real icons and only then
  points the layers back at them.

Each icon id is registered at most once, and concurrent requests for the same
id share a single fetch.
"""

import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from core.config import MAX_IMAGE_BYTES, RESOURCE_FETCH_TIMEOUT, USER_AGENT
from models.map_config import AppConfig, ImageResource
from services.engine import RenderingEngine
from services.errors import IconLoadError, UnsafeUrlError
from services.url_guard import validate_url

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE_ID = "mapvibe-placeholder"

# 1x1 fully transparent PNG
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

# Allowed image content types
ALLOWED_IMAGE_TYPES = {
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "image/svg+xml",
}


class ImageProvisioner:
    """Sole writer of the engine's icon registry for one map instance."""

    def __init__(
        self,
        config: AppConfig,
        engine: RenderingEngine,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.engine = engine
        self.client = client
        self._in_flight: Dict[str, "asyncio.Task[None]"] = {}
        # layer id -> real icon id, for layers pointed at the placeholder
        self._rewritten: Dict[str, str] = {}
        self._provisioning: Optional["asyncio.Task[Dict[str, bool]]"] = None

    @property
    def rewritten_layers(self) -> Dict[str, str]:
        return dict(self._rewritten)

    # -- loading -----------------------------------------------------------

    async def ensure_loaded(self, image_id: str) -> None:
        """Make sure an icon is registered, sharing any fetch already in flight.

        Raises:
            IconLoadError: If the id is not configured or the load failed.
                Every caller waiting on the same load sees the same error.
        """
        if self.engine.has_image(image_id):
            return

        task = self._in_flight.get(image_id)
        if task is None:
            resource = self.config.image_resource(image_id)
            if resource is None:
                raise IconLoadError(
                    image_id,
                    f"Image info for '{image_id}' not found in customImageResources",
                )
            task = asyncio.ensure_future(self._load(resource))
            self._in_flight[image_id] = task
            task.add_done_callback(lambda done, key=image_id: self._forget(key, done))

        # shield: one caller being cancelled must not cancel the shared load
        await asyncio.shield(task)

    def _forget(self, image_id: str, task: "asyncio.Task[None]") -> None:
        if self._in_flight.get(image_id) is task:
            del self._in_flight[image_id]

    async def _load(self, resource: ImageResource) -> None:
        data, content_type = await self._fetch_image(resource)
        # another path may have registered it while the fetch was running
        if self.engine.has_image(resource.id):
            return
        self.engine.add_image(resource.id, data, resource.pixel_ratio, content_type)
        logger.info(f"Loaded image '{resource.id}' from {resource.url}")

    async def _fetch_image(self, resource: ImageResource) -> Tuple[bytes, str]:
        try:
            url = validate_url(resource.url)
        except UnsafeUrlError as e:
            raise IconLoadError(resource.id, f"Refusing to load image {resource.id}", e.message)

        try:
            if self.client is None:
                async with httpx.AsyncClient(timeout=RESOURCE_FETCH_TIMEOUT) as client:
                    response = await self._get(client, url)
            else:
                response = await self._get(self.client, url)
        except httpx.HTTPError as e:
            raise IconLoadError(
                resource.id, f"Error loading image {resource.id} from {resource.url}", str(e)
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type:
            content_type = "image/png"  # Default to PNG for unspecified types
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise IconLoadError(
                resource.id, f"Image {resource.id} has unsupported content type '{content_type}'"
            )

        data = response.content
        if not data:
            raise IconLoadError(resource.id, f"Image {resource.id} is empty")
        if len(data) > MAX_IMAGE_BYTES:
            raise IconLoadError(
                resource.id,
                f"Image {resource.id} too large: {len(data)} bytes (max: {MAX_IMAGE_BYTES})",
            )
        return data, content_type

    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        response = await client.get(
            url,
            headers={
                "Accept": "image/png, image/jpeg, image/gif, image/webp, image/svg+xml, */*",
                "User-Agent": USER_AGENT,
            },
        )
        response.raise_for_status()
        return response

    # -- lazy strategy -----------------------------------------------------

    async def handle_image_missing(self, image_id: str) -> bool:
        """React to the engine's missing-image notification.

        Returns:
            True if the icon is registered afterwards. Failures are logged, the
            icon stays unregistered and the engine keeps its fallback rendering.
        """
        if self.config.image_resource(image_id) is None:
            logger.warning(f"Image info for '{image_id}' not found in customImageResources.")
            return False
        try:
            await self.ensure_loaded(image_id)
        except IconLoadError as e:
            logger.error(f"{e.message}: {e.technical_details}")
            return False
        return True

    # -- placeholder strategy ----------------------------------------------

    def prepare_style(self, style: Dict[str, Any]) -> Dict[str, Any]:
        """Phase 1: point custom icons at the placeholder and register it.

        Only literal ``icon-image`` values naming a configured resource are
        rewritten; built-in sprite icons and expressions are left alone.

        Args:
            style: Serialized style document (modified in place)

        Returns:
            The same style document
        """
        custom_ids = {resource.id for resource in self.config.custom_image_resources}
        for layer in style.get("layers", []):
            layout = layer.get("layout") or {}
            icon = layout.get("icon-image")
            if isinstance(icon, str) and icon in custom_ids:
                self._rewritten[layer["id"]] = icon
                layout["icon-image"] = PLACEHOLDER_IMAGE_ID

        if not self.engine.has_image(PLACEHOLDER_IMAGE_ID):
            self.engine.add_image(PLACEHOLDER_IMAGE_ID, PLACEHOLDER_PNG, 1.0, "image/png")

        logger.info(f"Placeholder icon set on {len(self._rewritten)} layer(s)")
        return style

    async def provision_all(self, image_ids: Optional[List[str]] = None) -> Dict[str, bool]:
        """Load several icons concurrently; one failure never aborts the others."""
        if image_ids is None:
            image_ids = [resource.id for resource in self.config.custom_image_resources]
        image_ids = list(dict.fromkeys(image_ids))

        results = await asyncio.gather(
            *(self.ensure_loaded(image_id) for image_id in image_ids), return_exceptions=True
        )
        outcome: Dict[str, bool] = {}
        for image_id, result in zip(image_ids, results):
            if isinstance(result, IconLoadError):
                logger.error(f"{result.message}: {result.technical_details}")
            elif isinstance(result, BaseException):
                logger.error(f"Unexpected error loading image {image_id}: {result}")
            outcome[image_id] = self.engine.has_image(image_id)
        return outcome

    def begin_provisioning(self) -> bool:
        """Start loading the rewritten icons without waiting for them.

        Needs a running event loop; without one the load is left to
        ``restore_icons``.

        Returns:
            True if a load was started
        """
        if self._provisioning is not None or not self._rewritten:
            return False
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, icon provisioning deferred to phase 2")
            return False
        self._provisioning = asyncio.ensure_future(
            self.provision_all(list(self._rewritten.values()))
        )
        return True

    async def restore_icons(self) -> List[str]:
        """Phase 2: wait for the real icons to settle, then swap them back in.

        Layers whose icon failed to load keep the placeholder; a later call
        retries them.

        Returns:
            Ids of the layers that were restored
        """
        if not self._rewritten:
            return []

        if self._provisioning is None:
            self._provisioning = asyncio.ensure_future(
                self.provision_all(list(self._rewritten.values()))
            )
        loaded = await asyncio.shield(self._provisioning)
        self._provisioning = None

        restored = []
        for layer_id, image_id in list(self._rewritten.items()):
            if not loaded.get(image_id):
                continue
            self.engine.set_layout_property(layer_id, "icon-image", image_id)
            del self._rewritten[layer_id]
            restored.append(layer_id)

        logger.info(f"Restored real icons on {len(restored)} layer(s)")
        return restored
