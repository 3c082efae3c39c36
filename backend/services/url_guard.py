"""Checks applied to every remote URL before the server fetches it.

The configuration URL comes from the embedding page and the GeoJSON and icon
URLs come from the configuration, so none of them are trusted.
"""

from urllib.parse import urlparse

from services.errors import UnsafeUrlError

# Allowed schemes
ALLOWED_SCHEMES = {"http", "https"}

LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
PRIVATE_PREFIXES = ("10.", "192.168.")


def validate_url(url: str) -> str:
    """Validate a URL the server is about to fetch.

    Args:
        url: The URL to validate

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        UnsafeUrlError: If the URL is malformed, not http(s), or targets a
            local or private-network host
    """
    url = url.strip()
    try:
        parsed = urlparse(url)
        host = parsed.hostname or ""
    except ValueError as e:
        raise UnsafeUrlError("Invalid URL format", str(e))

    if not parsed.scheme or parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeUrlError(
            f"URL scheme must be http or https, got: {parsed.scheme or 'none'}"
        )

    if not parsed.netloc:
        raise UnsafeUrlError("URL must include a host")

    # Block localhost/private network access to prevent SSRF
    if host.lower() in LOCAL_HOSTS:
        raise UnsafeUrlError(f"Fetching from localhost is not allowed: {host}")

    # Block private IP ranges (basic check)
    if host.startswith(PRIVATE_PREFIXES):
        raise UnsafeUrlError(f"Fetching from private networks is not allowed: {host}")

    return url
