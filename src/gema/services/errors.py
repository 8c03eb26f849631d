"""Service-layer exceptions.

Learn: Services never import FastAPI. They raise these, and the API
layer maps them to status codes (404 / 403 / 400).
"""


class ServiceError(Exception):
    """Base for errors a route can translate into a client response."""


class NotFoundError(ServiceError):
    """The requested record does not exist (or isn't visible to the caller)."""


class PermissionDeniedError(ServiceError):
    """The caller may not perform this operation."""


class InvalidInputError(ServiceError):
    """The payload passed schema validation but is still unusable."""
