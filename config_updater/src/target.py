from __future__ import annotations

from urllib.parse import urlsplit

from config_updater.src.errors import InvalidTargetError

STREAMING_PATH = "/plsrws/v2"


def _has_enough_labels(hostname: str) -> bool:
    # At least two "." separators, e.g. app.us1.example.com
    return hostname.count(".") >= 2


def api_url_for_config_check(target: str) -> str:
    """Derive the backend base URL from a target.

    A bare host is treated as ``https://<host>``. The result has no trailing
    slash. Raises :class:`InvalidTargetError` for non-HTTPS targets or hosts
    with fewer than two domain separators.
    """
    trimmed = target.strip().rstrip("/")
    if not trimmed:
        raise InvalidTargetError(target)
    if "://" not in trimmed:
        trimmed = f"https://{trimmed}"

    try:
        parsed = urlsplit(trimmed)
        hostname = parsed.hostname or ""
    except ValueError as exc:
        raise InvalidTargetError(target) from exc

    if parsed.scheme != "https" or not _has_enough_labels(hostname):
        raise InvalidTargetError(target)
    return trimmed


def api_url_for_streaming(target: str) -> str:
    """Build the WebSocket URL used by the agent's streaming channel."""
    try:
        parsed = urlsplit(target.strip())
        hostname = parsed.hostname or ""
        port = parsed.port
    except ValueError as exc:
        raise InvalidTargetError(target) from exc

    if not _has_enough_labels(hostname):
        raise InvalidTargetError(target)
    # Host only: userinfo in the target never reaches the streaming URL.
    host = f"{hostname}:{port}" if port is not None else hostname
    return f"wss://{host}{STREAMING_PATH}"
