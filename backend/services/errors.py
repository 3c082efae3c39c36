"""Error types raised by the embed controller."""


class MapVibeError(Exception):
    """Base class for embed controller errors.

    Attributes:
        message: Human-readable error message
        technical_details: Technical error details for debugging
    """

    def __init__(self, message: str, technical_details: str = ""):
        self.message = message
        self.technical_details = technical_details
        super().__init__(message)


class ConfigurationMissingError(MapVibeError):
    """No configuration reference was supplied. Fatal for the session."""

    def __init__(self):
        super().__init__("Error: The `config` URL parameter is missing.")


class ConfigurationFetchError(MapVibeError):
    """The configuration could not be fetched, parsed or validated. Fatal."""


class InvalidLayerReference(MapVibeError):
    """A ``customUi`` entry references a layer id absent from ``layers``."""

    def __init__(self, entry_kind: str, entry_id: str, layer_id: str):
        self.entry_kind = entry_kind
        self.entry_id = entry_id
        self.layer_id = layer_id
        super().__init__(
            f"{entry_kind} '{entry_id}' references unknown layer '{layer_id}' - skipping"
        )


class UnknownLayerError(MapVibeError):
    """A controller call named a background/data layer that is not configured."""


class IconLoadError(MapVibeError):
    """An icon resource failed to fetch or was rejected."""

    def __init__(self, image_id: str, message: str, technical_details: str = ""):
        self.image_id = image_id
        super().__init__(message, technical_details)


class GeometryFetchError(MapVibeError):
    """A GeoJSON source used for auto-framing failed to fetch or parse."""

    def __init__(self, source_id: str, message: str, technical_details: str = ""):
        self.source_id = source_id
        super().__init__(message, technical_details)


class SessionNotFoundError(MapVibeError):
    """No live embed session has the requested id."""


class UnsafeUrlError(MapVibeError):
    """A remote URL uses a disallowed scheme or points at a private host."""
