"""
Multi-Resolution Image Store.

Maps (resolution tag, date) pairs to rasters. Fusion algorithms read their
inputs from a store; they never modify it.
"""

import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from stfusion.core.exceptions import AmbiguousLookupError, NotFoundError
from stfusion.core.raster import Raster

logger = logging.getLogger(__name__)


class MultiResStore:
    """
    Container of rasters keyed by resolution tag and date.

    At most one raster exists per (tag, date). Lookups by date alone only
    succeed when exactly one tag has an image at that date.

    Example:
        store = MultiResStore()
        store.set("high", 1, high_1)
        store.set("low", 1, low_1)
        store.set("low", 2, low_2)
        store.get("low", 2)
        store.get_by_date(2)       # the only image at date 2
    """

    def __init__(self):
        self._images: Dict[Tuple[str, int], Raster] = {}
        self._lock = threading.RLock()

    def set(self, tag: str, date: int, raster: Raster) -> None:
        """Add or replace the raster for (tag, date)."""
        if not isinstance(raster, Raster):
            raise TypeError(f"Expected Raster, got {type(raster).__name__}")
        with self._lock:
            self._images[(tag, int(date))] = raster
        logger.debug(f"Stored {raster} as ({tag}, {date})")

    def get(self, tag: str, date: int) -> Raster:
        """
        Get the raster for (tag, date).

        Raises:
            NotFoundError: If no such image exists
        """
        with self._lock:
            try:
                return self._images[(tag, int(date))]
            except KeyError:
                raise NotFoundError(tag=tag, date=date) from None

    def has(self, tag: str, date: int) -> bool:
        with self._lock:
            return (tag, int(date)) in self._images

    def remove(self, tag: str, date: int) -> Raster:
        """Remove and return the raster for (tag, date)."""
        with self._lock:
            try:
                return self._images.pop((tag, int(date)))
            except KeyError:
                raise NotFoundError(tag=tag, date=date) from None

    def get_any(self, tag: Optional[str] = None, date: Optional[int] = None) -> Raster:
        """
        Get any raster matching the given partial key.

        Useful to read image geometry when all images share it. Without
        arguments any stored raster is returned. The first match in sorted
        key order wins.

        Raises:
            NotFoundError: If nothing matches
        """
        with self._lock:
            for key in sorted(self._images):
                if tag is not None and key[0] != tag:
                    continue
                if date is not None and key[1] != int(date):
                    continue
                return self._images[key]
        raise NotFoundError("No image matches the requested key", tag=tag, date=date)

    def get_by_date(self, date: int) -> Raster:
        """
        Get the single raster at ``date``.

        Raises:
            NotFoundError: If no image exists at this date
            AmbiguousLookupError: If images of several tags exist at this date
        """
        with self._lock:
            tags = tuple(sorted(t for t, d in self._images if d == int(date)))
            if not tags:
                raise NotFoundError(f"No image at date {date}", date=date)
            if len(tags) > 1:
                raise AmbiguousLookupError(date, tags)
            return self._images[(tags[0], int(date))]

    def get_by_tag(self, tag: str) -> Dict[int, Raster]:
        """All rasters of one tag, keyed by date."""
        with self._lock:
            return {d: r for (t, d), r in sorted(self._images.items()) if t == tag}

    @property
    def tags(self) -> List[str]:
        with self._lock:
            return sorted({t for t, _ in self._images})

    def dates(self, tag: Optional[str] = None) -> List[int]:
        """Sorted dates, optionally restricted to one tag."""
        with self._lock:
            return sorted({d for t, d in self._images if tag is None or t == tag})

    @property
    def count(self) -> int:
        return len(self)

    def clear(self) -> None:
        with self._lock:
            self._images.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)

    def __contains__(self, key: Tuple[str, int]) -> bool:
        tag, date = key
        return self.has(tag, date)

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        with self._lock:
            return iter(sorted(self._images))
