"""
Core data types: rasters, the image store, options, configuration and errors.
"""

from stfusion.core.exceptions import (
    AmbiguousLookupError,
    ConfigurationError,
    FusionError,
    ImageTypeError,
    NotFoundError,
    ShapeMismatchError,
    SizeError,
    WorkerError,
)
from stfusion.core.raster import Raster, Rectangle
from stfusion.core.store import MultiResStore

__all__ = [
    "AmbiguousLookupError",
    "ConfigurationError",
    "FusionError",
    "ImageTypeError",
    "NotFoundError",
    "ShapeMismatchError",
    "SizeError",
    "WorkerError",
    "Raster",
    "Rectangle",
    "MultiResStore",
]
