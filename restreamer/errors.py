"""Error types raised by the restreamer and mapped to HTTP responses."""

from __future__ import annotations


class RestreamerError(Exception):
    """Base error carrying the HTTP status it should be reported with."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(RestreamerError):
    status_code = 400


class InvalidDestinationError(ValidationError):
    pass


class AlreadyStreamingError(RestreamerError):
    status_code = 400


class NotFoundError(RestreamerError):
    status_code = 400


class MediaNotFoundError(RestreamerError):
    status_code = 404


class ResourceInUseError(RestreamerError):
    status_code = 400


class SpawnError(RestreamerError):
    status_code = 500


class StorageError(RestreamerError):
    status_code = 500


class ConfigError(RestreamerError):
    status_code = 500
