"""Domain exceptions. Each carries the HTTP status and public error text used
by the exception handlers in main.py."""


class ImageVaultError(Exception):
    """Base class for errors surfaced through the API envelope."""

    status_code = 500
    error = "Internal Server Error"

    def __init__(self, details: str | None = None):
        super().__init__(details or self.error)
        self.details = details


class ValidationError(ImageVaultError):
    status_code = 400
    error = "Validation error"


class InvalidFileError(ValidationError):
    """Uploaded file has a disallowed type or size."""
    error = "Invalid file"


class EmptyQueryError(ValidationError):
    error = "Search query is required"


class NotFoundError(ImageVaultError):
    status_code = 404
    error = "Image not found"


class StorageError(ImageVaultError):
    error = "Storage error"


class StorageWriteError(StorageError):
    error = "Failed to store image"


class MetadataError(ImageVaultError):
    error = "Metadata error"


class MetadataWriteError(MetadataError):
    error = "Failed to save image metadata"
