"""
Raster Buffers and Pixel Rectangles.

Provides the in-memory image representation shared by the store, the
fusion algorithms and the parallel driver.

Key Components:
- Rectangle: Pixel-space rectangle (x, y, width, height)
- Raster: Dense multi-channel image stored as a (bands, height, width) array

Views created with ``shared_copy`` alias the parent's memory, so a
worker writing into a view of an output buffer writes straight into the
parent. ``copy`` always produces independent storage.

Example Usage:
    from stfusion.core.raster import Raster, Rectangle

    image = Raster.zeros(width=100, height=80, channels=3, dtype=np.uint16)
    band = image.shared_copy(Rectangle(0, 40, 100, 40))
    band.set(7)            # lower half of ``image`` is now 7
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from stfusion.core.exceptions import ImageTypeError, SizeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rectangle:
    """
    Rectangle in pixel coordinates.

    Attributes:
        x: Starting column (inclusive)
        y: Starting row (inclusive)
        width: Width in pixels
        height: Height in pixels
    """

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self):
        for name in ("x", "y", "width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or int(value) != value:
                raise ValueError(f"Rectangle {name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"Rectangle {name} must be non-negative, got {value}")
            object.__setattr__(self, name, int(value))

    @property
    def right(self) -> int:
        """Column after the last column (exclusive)."""
        return self.x + self.width

    @property
    def bottom(self) -> int:
        """Row after the last row (exclusive)."""
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    @property
    def shape(self) -> Tuple[int, int]:
        """Shape as (height, width)."""
        return (self.height, self.width)

    def to_slice(self) -> Tuple[slice, slice]:
        """Convert to numpy slices (row_slice, col_slice)."""
        return (slice(self.y, self.bottom), slice(self.x, self.right))

    def contains(self, other: "Rectangle") -> bool:
        """Whether ``other`` lies completely inside this rectangle."""
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def intersection(self, other: "Rectangle") -> "Rectangle":
        """Overlap of both rectangles (empty rectangle if they are disjoint)."""
        x = max(self.x, other.x)
        y = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= x or bottom <= y:
            return Rectangle(x, y, 0, 0)
        return Rectangle(x, y, right - x, bottom - y)

    def grown(self, margin: int, bounds: Optional["Rectangle"] = None) -> "Rectangle":
        """
        Grow the rectangle by ``margin`` pixels on every side.

        Args:
            margin: Number of pixels to add on each side
            bounds: Optional rectangle to clip the result to

        Returns:
            The grown (and clipped) rectangle
        """
        x = max(self.x - margin, 0)
        y = max(self.y - margin, 0)
        right = self.right + margin
        bottom = self.bottom + margin
        if bounds is not None:
            x = max(x, bounds.x)
            y = max(y, bounds.y)
            right = min(right, bounds.right)
            bottom = min(bottom, bounds.bottom)
        return Rectangle(x, y, max(right - x, 0), max(bottom - y, 0))

    def relative_to(self, origin: "Rectangle") -> "Rectangle":
        """Express this rectangle in the coordinates of ``origin``."""
        if not origin.contains(self):
            raise ValueError(f"{self} is not inside {origin}")
        return Rectangle(self.x - origin.x, self.y - origin.y, self.width, self.height)

    def split_rows(self, parts: int) -> List["Rectangle"]:
        """
        Split into horizontal bands of ``ceil(height / parts)`` rows.

        The last band may be shorter. There are never more bands than rows,
        so fewer than ``parts`` bands can be returned.
        """
        if parts < 1:
            raise ValueError(f"Number of parts must be at least 1, got {parts}")
        if self.height == 0:
            return []
        band_height = math.ceil(self.height / min(parts, self.height))
        bands = []
        for y in range(self.y, self.bottom, band_height):
            bands.append(Rectangle(self.x, y, self.width, min(band_height, self.bottom - y)))
        return bands

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary."""
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rectangle":
        """Create from dictionary."""
        return cls(
            x=data.get("x", 0),
            y=data.get("y", 0),
            width=data["width"],
            height=data["height"],
        )

    @classmethod
    def from_string(cls, text: str) -> "Rectangle":
        """Parse ``"x,y,width,height"``."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected 'x,y,width,height', got {text!r}")
        return cls(*(int(p) for p in parts))


MaskLike = Union["Raster", np.ndarray]


class Raster:
    """
    Multi-channel image buffer.

    Pixel data is held as a numpy array of shape (bands, height, width).
    A two-dimensional array passed to the constructor is treated as a
    single band.

    Attributes:
        data: The pixel array, possibly a view into another raster
        mask: Optional validity mask (True = valid), shape (1 or bands, height, width)
    """

    def __init__(self, data: np.ndarray, mask: Optional[np.ndarray] = None):
        data = np.asarray(data)
        if data.ndim == 2:
            data = data[np.newaxis, :, :]
        if data.ndim != 3:
            raise ImageTypeError(
                "Raster data must have shape (bands, height, width)",
                expected=3,
                found=data.ndim,
            )
        self.data = data
        self.mask = None
        if mask is not None:
            mask = np.asarray(mask, dtype=bool)
            if mask.ndim == 2:
                mask = mask[np.newaxis, :, :]
            self.mask = mask

    @classmethod
    def zeros(
        cls,
        width: int,
        height: int,
        channels: int = 1,
        dtype: Any = np.float64,
    ) -> "Raster":
        """Allocate a zero-filled raster."""
        return cls(np.zeros((channels, height, width), dtype=dtype))

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Raster":
        return cls(np.asarray(array))

    @property
    def width(self) -> int:
        return self.data.shape[2]

    @property
    def height(self) -> int:
        return self.data.shape[1]

    @property
    def channels(self) -> int:
        return self.data.shape[0]

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def size(self) -> Tuple[int, int]:
        """Size as (width, height)."""
        return (self.width, self.height)

    @property
    def bounds(self) -> Rectangle:
        """Rectangle covering the whole raster."""
        return Rectangle(0, 0, self.width, self.height)

    def __repr__(self) -> str:
        return (
            f"Raster(width={self.width}, height={self.height}, "
            f"channels={self.channels}, dtype={self.dtype})"
        )

    def _crop(self, array: Optional[np.ndarray], rect: Optional[Rectangle]) -> Optional[np.ndarray]:
        if array is None or rect is None:
            return array
        if not self.bounds.contains(rect):
            raise SizeError(
                "Rectangle exceeds raster bounds",
                expected=self.bounds,
                found=rect,
            )
        rows, cols = rect.to_slice()
        return array[:, rows, cols]

    def shared_copy(self, rect: Optional[Rectangle] = None) -> "Raster":
        """Return a raster aliasing this raster's storage (optionally cropped)."""
        view = Raster(self._crop(self.data, rect))
        view.mask = self._crop(self.mask, rect)
        return view

    def copy(self, rect: Optional[Rectangle] = None) -> "Raster":
        """Return a raster with independent storage (optionally cropped)."""
        owned = Raster(self._crop(self.data, rect).copy())
        mask = self._crop(self.mask, rect)
        owned.mask = None if mask is None else mask.copy()
        return owned

    def channel(self, index: int) -> "Raster":
        """Single-channel view of channel ``index``."""
        view = Raster(self.data[index : index + 1])
        if self.mask is not None:
            view.mask = self.mask[index : index + 1] if self.mask.shape[0] > 1 else self.mask
        return view

    def is_shared_with(self, other: "Raster") -> bool:
        """Whether both rasters alias the same memory."""
        return np.shares_memory(self.data, other.data)

    def has_same_layout(self, other: "Raster") -> bool:
        """Equal size, channel count and pixel type."""
        return (
            self.size == other.size
            and self.channels == other.channels
            and self.dtype == other.dtype
        )

    def is_mask_for(self, raster: "Raster") -> bool:
        """
        Whether this raster can serve as a mask for ``raster``.

        A valid mask has the same width and height, a boolean or unsigned
        integer pixel type and either one channel or as many channels as
        ``raster``.
        """
        if self.size != raster.size:
            return False
        if not (self.dtype == np.bool_ or np.issubdtype(self.dtype, np.unsignedinteger)):
            return False
        return self.channels in (1, raster.channels)

    def _check_compatible(self, other: "Raster", operation: str) -> None:
        if self.size != other.size:
            raise SizeError(
                f"Cannot {operation} rasters of different size",
                expected=self.size,
                found=other.size,
            )
        if self.channels != other.channels or self.dtype != other.dtype:
            raise ImageTypeError(
                f"Cannot {operation} rasters of different type",
                expected=(self.channels, str(self.dtype)),
                found=(other.channels, str(other.dtype)),
            )

    def _mask_array(self, mask: Optional[MaskLike]) -> Optional[np.ndarray]:
        if mask is None:
            return None
        mask_raster = mask if isinstance(mask, Raster) else Raster(np.asarray(mask))
        if not mask_raster.is_mask_for(self):
            raise ImageTypeError(
                "Invalid mask",
                expected=(self.size, f"1 or {self.channels} channels, bool/uint"),
                found=(mask_raster.size, mask_raster.channels, str(mask_raster.dtype)),
            )
        return np.broadcast_to(mask_raster.data.astype(bool), self.data.shape)

    def absdiff(self, other: "Raster") -> "Raster":
        """Elementwise absolute difference, computed without integer wrap-around."""
        self._check_compatible(other, "subtract")
        diff = np.abs(self.data.astype(np.float64) - other.data.astype(np.float64))
        return Raster(diff.astype(self.dtype))

    def subtract(self, other: "Raster") -> "Raster":
        self._check_compatible(other, "subtract")
        return Raster(self.data - other.data)

    def add(self, other: "Raster") -> "Raster":
        self._check_compatible(other, "add")
        return Raster(self.data + other.data)

    def equals(self, other: "Raster") -> np.ndarray:
        """Elementwise equality as a boolean (bands, height, width) array."""
        self._check_compatible(other, "compare")
        return self.data == other.data

    def copy_values_from(self, source: "Raster", mask: Optional[MaskLike] = None) -> None:
        """Copy pixel values from ``source``, only where ``mask`` is set."""
        self._check_compatible(source, "copy between")
        mask_array = self._mask_array(mask)
        if mask_array is None:
            self.data[...] = source.data
        else:
            np.copyto(self.data, source.data, where=mask_array)

    def set(self, value: float, mask: Optional[MaskLike] = None) -> None:
        """Set all (or all masked) pixels to ``value``."""
        mask_array = self._mask_array(mask)
        if mask_array is None:
            self.data[...] = value
        else:
            self.data[mask_array] = value

    def at(self, x: int, y: int, channel: int = 0) -> Any:
        """Pixel value at column ``x``, row ``y``."""
        return self.data[channel, y, x].item()

    def mean_std(self, mask: Optional[MaskLike] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Per-channel mean and standard deviation.

        Args:
            mask: Optional mask restricting the statistics to valid pixels

        Returns:
            Tuple of (means, standard deviations), one entry per channel.
            Channels without any valid pixel yield NaN.
        """
        mask_array = self._mask_array(mask)
        means = np.full(self.channels, np.nan)
        stds = np.full(self.channels, np.nan)
        for c in range(self.channels):
            values = self.data[c].astype(np.float64)
            if mask_array is not None:
                values = values[mask_array[c]]
            if values.size:
                means[c] = values.mean()
                stds[c] = values.std()
        return means, stds
