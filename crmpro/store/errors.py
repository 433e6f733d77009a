from __future__ import annotations


class UnknownResourceError(LookupError):
    """Raised when a resource type has no registered definition."""

    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        super().__init__(f"Unknown resource type '{resource_type}'")


class FeedUnavailableError(ConnectionError):
    """Raised by a change feed that cannot accept subscriptions."""
