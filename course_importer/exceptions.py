"""Domain errors raised by the import pipeline and its collaborators."""

from typing import Optional


class CourseImportError(Exception):
    """Base class for course import errors."""
    pass


class InputError(CourseImportError):
    """Request payload is missing or malformed."""
    pass


class UpstreamFetchError(CourseImportError):
    """The source page could not be fetched."""
    pass


class ImageImportError(CourseImportError):
    """A single candidate image failed; never fatal to the import."""

    stage = "unknown"

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ImageNormalizeError(ImageImportError):
    stage = "normalize"


class ImageFetchError(ImageImportError):
    stage = "fetch"


class ImageProcessError(ImageImportError):
    stage = "process"


class ImagePublishError(ImageImportError):
    stage = "publish"


class StorageError(CourseImportError):
    """Storage API answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
