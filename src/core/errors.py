"""
Attribution error hierarchy.

The calculator and aggregator only raise on structurally invalid input.
The recalculation orchestrator is the layer that catches, logs and
continues past per-link failures.
"""

from __future__ import annotations


class AttributionError(Exception):
    """Base class for attribution engine errors."""


class EventWindowValidationError(AttributionError, ValueError):
    """Malformed event window (e.g. missing event date)."""

    def __init__(self, message: str, event_id: str | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id


class NotFoundError(AttributionError, LookupError):
    """A referenced link, event or snapshot is no longer present."""


class EventNotFoundError(NotFoundError):
    """Association references an event the event store no longer knows."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class SnapshotNotFoundError(NotFoundError):
    """No raw analytics snapshot is available for a link."""

    def __init__(self, link_id: str) -> None:
        super().__init__(f"Analytics snapshot not found for link: {link_id}")
        self.link_id = link_id


class AssociationNotFoundError(NotFoundError):
    """No association row exists for a (link, event) pair."""

    def __init__(self, link_id: str, event_id: str) -> None:
        super().__init__(f"Association not found: link={link_id} event={event_id}")
        self.link_id = link_id
        self.event_id = event_id


class AggregationError(AttributionError):
    """One request in an aggregation batch failed."""

    def __init__(self, index: int, cause: BaseException) -> None:
        super().__init__(f"Aggregation request {index} failed: {cause}")
        self.index = index
        self.cause = cause
