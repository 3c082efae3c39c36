import os

from dotenv import load_dotenv

# Load environment variables from .env file
# Load .env.local first (for local development), then .env (fallback)
load_dotenv(".env.local", override=True)  # Local development overrides
load_dotenv()  # Load .env if exists (won't override existing vars)
# General config in a central place


# Logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# CORS configuration
# Comma-separated list of allowed origins; if empty, allow all (not recommended with credentials)
RAW_ALLOWED_ORIGINS = os.getenv("ALLOWED_CORS_ORIGINS", "")
ALLOWED_CORS_ORIGINS = [o.strip() for o in RAW_ALLOWED_ORIGINS.split(",") if o.strip()]


# ----------------------------------------------------------------------------
# Remote resources (configuration document, GeoJSON sources, icons)
# ----------------------------------------------------------------------------

# Timeout (seconds) for fetching the configuration document
CONFIG_FETCH_TIMEOUT = float(os.getenv("MAPVIBE_CONFIG_FETCH_TIMEOUT", "30"))

# Timeout (seconds) for GeoJSON and icon fetches
RESOURCE_FETCH_TIMEOUT = float(os.getenv("MAPVIBE_RESOURCE_FETCH_TIMEOUT", "30"))

# Icon size limit (10MB)
MAX_IMAGE_BYTES = int(os.getenv("MAPVIBE_MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))

USER_AGENT = "MapVibe-Embed/1.0"


# ----------------------------------------------------------------------------
# Map behaviour
# ----------------------------------------------------------------------------

# Fixed fit-to-bounds padding used when the viewport size is unknown
FIT_PADDING_PX = int(os.getenv("MAPVIBE_FIT_PADDING_PX", "100"))

# Fraction of the viewport's shorter side used as fit padding
FIT_PADDING_FRACTION = 0.1

# Maximum number of live embed sessions kept in memory (oldest evicted first)
MAX_SESSIONS = int(os.getenv("MAPVIBE_MAX_SESSIONS", "500"))

ICON_STRATEGY_ENV = "MAPVIBE_ICON_STRATEGY"
INTERACTIVE_RULE_ENV = "MAPVIBE_INTERACTIVE_RULE"

ICON_STRATEGIES = {"lazy", "placeholder"}
INTERACTIVE_RULES = {"flag", "attributes"}


def _env_choice(name: str, choices: set, default: str) -> str:
    """Read an enumerated environment variable, falling back to the default."""
    value = os.getenv(name, default).strip().lower()
    if value not in choices:
        return default
    return value


def get_icon_strategy() -> str:
    """Return the icon provisioning strategy ("lazy" or "placeholder").

    Exposed as a function so tests can override the environment at runtime
    and re-query the value without needing to reload this module.
    """
    return _env_choice(ICON_STRATEGY_ENV, ICON_STRATEGIES, "lazy")


def get_interactive_rule() -> str:
    """Return how interactive layers are determined ("flag" or "attributes")."""
    return _env_choice(INTERACTIVE_RULE_ENV, INTERACTIVE_RULES, "flag")
