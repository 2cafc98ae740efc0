"""Shared exceptions for the query and cache services."""


class FilterValidationError(Exception):
    """
    Raised when a filter, order or group references something the resource does not allow.

    Used at the UI boundary against filter metadata, before a request is issued.
    """

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f'Invalid filter field "{key}": {reason}')


class FilterDepthError(ValueError):
    """Raised when a filter tree nests deeper than the allowed bound."""

    def __init__(self, depth: int, max_depth: int) -> None:
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(f"Filter nesting depth {depth} exceeds maximum of {max_depth}")


class ListFetchError(Exception):
    """
    Raised when a list page cannot be fetched.

    Wraps transport and HTTP errors with a semantic category (see
    ``shared.api_errors``) so consumers can show a meaningful indicator while
    keeping the last good items on screen.
    """

    def __init__(self, resource: str, category: str, message: str) -> None:
        self.resource = resource
        self.category = category
        self.message = message
        super().__init__(f"{resource}: {message}")
