# elc/errors.py
from __future__ import annotations

import requests

# Network failures, timeouts and non-2xx statuses come straight from requests.
TransportError = requests.RequestException


class ElcError(Exception):
    """Base class for errors raised by this package."""


class ConfigurationError(ElcError, ValueError):
    """The client was constructed with settings it cannot use."""


class SchemaError(ElcError, ValueError):
    """A JSON document does not have the shape of the expected contract."""


class ServiceError(requests.HTTPError):
    """The service answered with an ArcGIS ``{"error": {...}}`` payload."""

    def __init__(self, message: str, code=None, details=None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.details = list(details or [])
