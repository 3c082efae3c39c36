"""
Embed Configuration Loader

Fetches and validates the configuration document that drives an embedded map.
The page passes the document location in its ``config`` query parameter.

The loader:
1. Fails fast when no configuration URL was given
2. Fetches the document over HTTP(S)
3. Validates it against the AppConfig schema
4. Checks every customUi layer reference against the style's layers
5. Logs warnings for non-fatal issues and skips the offending entries
"""

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from pydantic import ValidationError

from core.config import CONFIG_FETCH_TIMEOUT, USER_AGENT
from models.map_config import (
    AppConfig,
    BackgroundLayerConfig,
    ConfigValidationResult,
    DataLayerConfig,
    ImageResource,
)
from services.errors import (
    ConfigurationFetchError,
    ConfigurationMissingError,
    InvalidLayerReference,
    UnsafeUrlError,
)
from services.url_guard import validate_url

logger = logging.getLogger(__name__)


def validate_config_url(config_url: Optional[str]) -> str:
    """Validate the configuration URL.

    Raises:
        ConfigurationMissingError: If no URL was given
        ConfigurationFetchError: If the URL is not an absolute http(s) URL or
            targets a local or private-network host
    """
    if not config_url or not config_url.strip():
        raise ConfigurationMissingError()

    try:
        return validate_url(config_url)
    except UnsafeUrlError as e:
        raise ConfigurationFetchError(
            f"Error initializing application: invalid config URL: {e.message}",
            e.technical_details,
        )


async def fetch_config(
    config_url: Optional[str], client: Optional[httpx.AsyncClient] = None
) -> Dict[str, Any]:
    """Fetch and parse the configuration document.

    Args:
        config_url: Value of the page's ``config`` parameter
        client: Optional shared HTTP client

    Returns:
        The parsed JSON document

    Raises:
        ConfigurationMissingError: If no URL was given
        ConfigurationFetchError: On network, HTTP status or JSON errors
    """
    config_url = validate_config_url(config_url)
    logger.info(f"Fetching embed configuration from: {config_url}")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=CONFIG_FETCH_TIMEOUT) as own_client:
                response = await _get(own_client, config_url)
        else:
            response = await _get(client, config_url)
    except httpx.HTTPStatusError as e:
        raise ConfigurationFetchError(
            "Error initializing application: Failed to fetch config file: "
            f"{e.response.reason_phrase or e.response.status_code}",
            str(e),
        )
    except httpx.HTTPError as e:
        raise ConfigurationFetchError(
            f"Error initializing application: Failed to fetch config file: {e}", str(e)
        )

    try:
        data = response.json()
    except ValueError as e:
        raise ConfigurationFetchError(
            "Error initializing application: config file is not valid JSON", str(e)
        )

    if not isinstance(data, dict):
        raise ConfigurationFetchError(
            "Error initializing application: config file must contain a JSON object"
        )
    return data


async def _get(client: httpx.AsyncClient, url: str) -> httpx.Response:
    response = await client.get(
        url,
        headers={"Accept": "application/json, */*;q=0.1", "User-Agent": USER_AGENT},
    )
    response.raise_for_status()
    return response


def validate_background_layers(
    backgrounds: List[BackgroundLayerConfig], layer_ids: Set[str]
) -> Tuple[List[BackgroundLayerConfig], List[str]]:
    """Drop background entries that point at layers absent from the style.

    Args:
        backgrounds: Background entries from customUi
        layer_ids: Ids of the style's layers

    Returns:
        Tuple of (valid entries, warning messages)
    """
    warnings: List[str] = []
    valid: List[BackgroundLayerConfig] = []
    seen: Set[str] = set()

    for background in backgrounds:
        if background.id not in layer_ids:
            warnings.append(
                InvalidLayerReference("Background layer", background.id, background.id).message
            )
            continue
        if background.id in seen:
            warnings.append(f"Duplicate background layer '{background.id}' - ignoring")
            continue
        seen.add(background.id)
        valid.append(background)

    return valid, warnings


def validate_data_layers(
    data_layers: List[DataLayerConfig], layer_ids: Set[str]
) -> Tuple[List[DataLayerConfig], List[str]]:
    """Drop dangling layer references from data layers.

    A data layer keeps the references that resolve; it is skipped entirely when
    none do.

    Returns:
        Tuple of (valid entries, warning messages)
    """
    warnings: List[str] = []
    valid: List[DataLayerConfig] = []
    seen: Set[str] = set()

    for data_layer in data_layers:
        if data_layer.id in seen:
            warnings.append(f"Duplicate data layer '{data_layer.id}' - ignoring")
            continue

        resolved = []
        for layer_id in data_layer.layer_ids:
            if layer_id in layer_ids:
                resolved.append(layer_id)
            else:
                warnings.append(
                    InvalidLayerReference("Data layer", data_layer.id, layer_id).message
                )

        if not resolved:
            warnings.append(f"Data layer '{data_layer.id}' has no valid layers - skipping")
            continue

        seen.add(data_layer.id)
        valid.append(data_layer.model_copy(update={"layer_ids": resolved}))

    return valid, warnings


def validate_image_resources(
    resources: List[ImageResource],
) -> Tuple[List[ImageResource], List[str]]:
    """Keep the first declaration of each icon id.

    Returns:
        Tuple of (valid resources, warning messages)
    """
    warnings: List[str] = []
    valid: List[ImageResource] = []
    seen: Set[str] = set()

    for resource in resources:
        if resource.id in seen:
            warnings.append(f"Duplicate image resource '{resource.id}' - keeping the first")
            continue
        if not resource.url.strip():
            warnings.append(f"Image resource '{resource.id}' has an empty URL - skipping")
            continue
        seen.add(resource.id)
        valid.append(resource)

    return valid, warnings


def validate_config(data: Dict[str, Any]) -> ConfigValidationResult:
    """Validate a parsed configuration document.

    Returns:
        ConfigValidationResult with config and any warnings/errors
    """
    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        logger.error(f"Embed config validation failed: {e}")
        return ConfigValidationResult(
            valid=False, config=None, errors=[f"Configuration validation failed: {e}"]
        )

    warnings: List[str] = []
    layer_ids = set(config.layer_ids())
    custom_ui = config.custom_ui

    valid_backgrounds, background_warnings = validate_background_layers(
        custom_ui.background_layers, layer_ids
    )
    warnings.extend(background_warnings)
    custom_ui.background_layers = valid_backgrounds

    valid_data_layers, data_warnings = validate_data_layers(custom_ui.data_layers, layer_ids)
    warnings.extend(data_warnings)
    custom_ui.data_layers = valid_data_layers

    valid_images, image_warnings = validate_image_resources(config.custom_image_resources)
    warnings.extend(image_warnings)
    config.custom_image_resources = valid_images

    for warning in warnings:
        logger.warning(f"Embed config: {warning}")

    logger.info(
        f"Embed config loaded successfully:\n"
        f"  - Title: {config.title or '(untitled)'}\n"
        f"  - Style layers: {len(config.layers)}\n"
        f"  - Background layers: {len(custom_ui.background_layers)}\n"
        f"  - Data layers: {len(custom_ui.data_layers)} "
        f"({sum(1 for d in custom_ui.data_layers if d.interactive)} interactive)\n"
        f"  - Image resources: {len(config.custom_image_resources)}\n"
        f"  - Warnings: {len(warnings)}"
    )

    return ConfigValidationResult(valid=True, config=config, warnings=warnings, errors=[])


async def load_config(
    config_url: Optional[str], client: Optional[httpx.AsyncClient] = None
) -> ConfigValidationResult:
    """Fetch and validate the configuration for one embed session.

    Raises:
        ConfigurationMissingError: If no URL was given
        ConfigurationFetchError: If fetching, parsing or schema validation failed
    """
    data = await fetch_config(config_url, client)
    result = validate_config(data)
    if not result.valid:
        raise ConfigurationFetchError(
            "Error initializing application: " + "; ".join(result.errors)
        )
    return result
