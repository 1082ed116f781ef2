"""
Custom Exceptions for Spatiotemporal Fusion.

Provides a hierarchy of exceptions for the failure modes of the fusion
pipeline: invalid configuration, missing source images, and images whose
geometry or pixel type do not fit together.
"""

from typing import Any, Dict, Optional, Tuple


class FusionError(Exception):
    """
    Base exception for fusion failures.

    All fusion-specific exceptions inherit from this class,
    allowing for broad exception handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the failure
    """

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ConfigurationError(FusionError, ValueError):
    """
    Options are inconsistent or out of range.

    Raised by option validation and by ``configure`` of fusors and of the
    parallelizer before any state is changed.

    Attributes:
        option: Name of the offending option, if known
        value: The rejected value
    """

    def __init__(self, message: str, option: str = None, value: Any = None):
        details = {}
        if option is not None:
            details["option"] = option
            details["value"] = value
        super().__init__(message, details)
        self.option = option
        self.value = value


class NotFoundError(FusionError, LookupError):
    """
    A requested image is not present in the store.

    Attributes:
        tag: Resolution tag that was looked up
        date: Date that was looked up
    """

    def __init__(self, message: str = None, tag: str = None, date: int = None):
        if message is None:
            message = f"No image with tag '{tag}' at date {date}"
        super().__init__(message, {"tag": tag, "date": date})
        self.tag = tag
        self.date = date

    def __str__(self) -> str:
        # LookupError would quote the message like a KeyError otherwise
        return FusionError.__str__(self)


class AmbiguousLookupError(NotFoundError):
    """A date-only lookup matched images of more than one resolution tag."""

    def __init__(self, date: int, tags: Tuple[str, ...]):
        message = f"Date {date} is ambiguous, images with tags {list(tags)} exist"
        super().__init__(message, date=date)
        self.details["tags"] = list(tags)
        self.tags = tags


class ShapeMismatchError(FusionError, ValueError):
    """
    Images or masks do not fit together.

    Raised before any pixel is written.

    Attributes:
        expected: Expected geometry or type
        found: What was actually supplied
    """

    def __init__(self, message: str, expected: Any = None, found: Any = None):
        super().__init__(message, {"expected": expected, "found": found})
        self.expected = expected
        self.found = found


class SizeError(ShapeMismatchError):
    """Width or height of an image or mask does not match."""


class ImageTypeError(ShapeMismatchError):
    """Pixel data type or channel count of an image or mask does not match."""


class WorkerError(FusionError):
    """
    Describes the failure of one worker of a partitioned run.

    The parallelizer re-raises the worker's own exception; this class is
    used to report the failure together with its band.

    Attributes:
        band_index: Index of the failed band
        rectangle: Rectangle the worker was predicting
        cause: The exception raised by the worker
    """

    def __init__(
        self,
        band_index: int,
        rectangle: Optional[Any] = None,
        cause: Optional[BaseException] = None,
    ):
        message = f"Worker for band {band_index} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        details: Dict[str, Any] = {"band_index": band_index}
        if rectangle is not None:
            details["rectangle"] = rectangle
        super().__init__(message, details)
        self.band_index = band_index
        self.rectangle = rectangle
        self.cause = cause
