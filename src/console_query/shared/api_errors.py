"""
Shared API error parsing for list fetches.

The parsing extracts semantic meaning from HTTP and transport errors; the
query cache stores the result on the entry so consumers can show an error
indicator next to the last good items instead of a blank list.
"""

from dataclasses import dataclass
from typing import Any, Literal

import httpx

from console_query.services.exceptions import ListFetchError

ErrorCategory = Literal[
    "auth",        # 401 - Invalid or expired token
    "forbidden",   # 403 - Missing permission for the resource
    "not_found",   # 404 - Unknown resource kind or endpoint
    "validation",  # 400/422 - Request rejected (bad filter, field, operator)
    "transport",   # Connection failure, timeout, unreadable response
    "internal",    # 5xx or unexpected errors
]


@dataclass
class ParsedApiError:
    """Parsed API error with semantic category and message."""

    category: ErrorCategory
    message: str


def parse_http_error(e: httpx.HTTPStatusError, resource: str = "") -> ParsedApiError:
    """
    Parse HTTP error into semantic categories.

    Args:
        e: The HTTP status error from httpx
        resource: Resource kind (e.g., "servers", "credentials") for error messages

    Returns:
        ParsedApiError with category and message
    """
    status = e.response.status_code

    if status == 401:
        return ParsedApiError("auth", "Invalid or expired token")

    if status == 403:
        msg = f"Access denied to {resource}" if resource else "Access denied"
        return ParsedApiError("forbidden", msg)

    if status == 404:
        msg = f"{resource.title()} not found" if resource else "Not found"
        return ParsedApiError("not_found", msg)

    if status in (400, 422):
        return ParsedApiError("validation", _extract_error_message(e) or "Validation error")

    # Generic error for other status codes
    return ParsedApiError("internal", f"API error {status}")


def _extract_error_message(e: httpx.HTTPStatusError) -> str | None:
    """Extract the message from an ``{"error": ...}`` / ``{"message": ...}`` body."""
    try:
        body: Any = e.response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    for field in ("error", "message", "detail"):
        value = body.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def to_fetch_error(error: Exception, resource: str) -> ListFetchError:
    """
    Convert a transport-layer exception into a ListFetchError.

    Errors that are already ListFetchError pass through unchanged.
    """
    if isinstance(error, ListFetchError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        parsed = parse_http_error(error, resource)
        return ListFetchError(resource, parsed.category, parsed.message)
    if isinstance(error, httpx.TimeoutException):
        return ListFetchError(resource, "transport", "Request timed out")
    if isinstance(error, httpx.TransportError):
        return ListFetchError(resource, "transport", f"Connection failed: {error}")
    return ListFetchError(resource, "internal", str(error) or type(error).__name__)
