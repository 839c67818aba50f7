"""Custom structlog processors for notifier log output.

Provider payloads end up in log events (rendered titles, webhook targets,
batch member lists), so every event passes through masking and size limits
before it is rendered.

Usage:
    from notifier.logging.formatters import mask_sensitive_data, truncate_large_values
"""

import re
from typing import Any

# Key fragments whose values are masked, at any nesting depth
SENSITIVE_PATTERNS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "webhook_url",
    }
)

# Credentials passed as URL query parameters
_URL_CREDENTIAL = re.compile(
    r"(?i)([?&](?:token|key|sig|signature|secret|access_token)=)[^&#\s]+"
)


def add_service_info(service: str, version: str = "unknown"):
    """Create a processor that stamps every event with the service identity.

    Args:
        service: Service name, e.g. "notifier".
        version: Release version.

    Returns:
        A structlog processor function.
    """

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.setdefault("service", service)
        event_dict.setdefault("service_version", version)
        return event_dict

    return processor


def _is_sensitive(key: Any, patterns: frozenset[str]) -> bool:
    key_lower = str(key).lower()
    return any(pattern in key_lower for pattern in patterns)


def mask_sensitive_data(
    mask_value: str = "***REDACTED***",
    additional_patterns: frozenset[str] | None = None,
):
    """Create a processor that masks sensitive data in log entries.

    Values under sensitive keys (case-insensitive substring match) are
    replaced, including inside nested dicts such as rendered payloads.
    Credentials in URL query strings are masked inside any string value.
    None values are left as they are.

    Args:
        mask_value: The string to replace sensitive values with.
        additional_patterns: Extra key fragments to consider sensitive.

    Returns:
        A structlog processor function.
    """
    patterns = SENSITIVE_PATTERNS
    if additional_patterns:
        patterns = patterns | additional_patterns

    def mask(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: (
                    mask_value
                    if item is not None and _is_sensitive(key, patterns)
                    else mask(item)
                )
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(mask(item) for item in value)
        if isinstance(value, str):
            return _URL_CREDENTIAL.sub(lambda m: m.group(1) + mask_value, value)
        return value

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        return mask(event_dict)

    return processor


def truncate_large_values(max_length: int = 500, max_items: int = 20):
    """Create a processor that bounds the size of a single log line.

    Long strings (message content, payload text) are cut at ``max_length``
    characters. Long lists (batch member ids) keep their first
    ``max_items`` entries plus a marker with the full count.

    Args:
        max_length: Maximum string length before truncation.
        max_items: Maximum list length before truncation.

    Returns:
        A structlog processor function.
    """

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        for key, value in event_dict.items():
            if isinstance(value, str) and len(value) > max_length:
                event_dict[key] = (
                    value[:max_length] + f"...[truncated, {len(value)} chars total]"
                )
            elif isinstance(value, (list, tuple)) and len(value) > max_items:
                event_dict[key] = list(value[:max_items]) + [
                    f"...[{len(value)} items total]"
                ]
        return event_dict

    return processor
