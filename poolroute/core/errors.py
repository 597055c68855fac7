# poolroute/core/errors.py
"""
Typed domain errors for the routing core.

Each error maps to a specific HTTP status code.  The transport layer
catches ``RouteError`` subtypes and converts them to JSON responses
without embedding business logic in the route handlers.
"""
from __future__ import annotations


class RouteError(Exception):
    """Base class for all routing domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(RouteError):
    """Invalid request payload (400)."""

    status_code = 400


class NotFoundError(RouteError):
    """Job or other resource not found (404)."""

    status_code = 404


class CommitError(RouteError):
    """Batch update rejected by the persistence layer (502)."""

    status_code = 502


class InvalidPayloadError(RouteError):
    """Stored event/notification payload does not match its type (422)."""

    status_code = 422
