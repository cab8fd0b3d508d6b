"""Exception types raised by the photo description pipeline."""


class PhotoDescError(Exception):
    """Base class for all photo-describer errors."""


class ConfigError(PhotoDescError):
    """Missing or invalid configuration. Fatal at startup."""


class FileAccessError(PhotoDescError):
    """An image or metadata file is missing, unreadable or unwritable."""


class UnsupportedFormatError(PhotoDescError):
    """The image format cannot be decoded for resizing."""


class NetworkError(PhotoDescError):
    """Timeout, connection failure, redirect exhaustion or an HTTP error status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(PhotoDescError):
    """The API response does not have the expected chat-completion shape."""


class ExtractionError(PhotoDescError):
    """No valid ``{description, tags}`` object could be found in the model output."""
