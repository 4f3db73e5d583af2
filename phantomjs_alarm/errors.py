"""
Exceptions raised by the packaging pipeline.

Every failure carries the human-readable name of the step that failed and,
where one exists, the underlying status code (HTTP status, tar error, etc.).
"""


class PackagingError(Exception):
    """Base class for fatal packaging failures."""

    def __init__(self, message: str, stage: str, status: int | str | None = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.status = status

    def __str__(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.status is not None:
            text += f" (status: {self.status})"
        return text


class ScrapeError(PackagingError):
    """The mirror listing could not be fetched or yielded no usable version."""


class ValidationError(PackagingError):
    """A version string, architecture or input file was rejected."""


class DownloadError(PackagingError):
    """A download failed (connection error or non-2xx response)."""


class ExtractionError(PackagingError):
    """An archive was corrupt or lacked an expected entry."""
