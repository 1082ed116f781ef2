"""
GeoTIFF Reading and Writing.

Loads rasters into a MultiResStore and writes predictions back, keeping
the georeferencing (CRS, transform) of a reference image unchanged.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

import numpy as np

from stfusion.core.raster import Raster, Rectangle
from stfusion.core.store import MultiResStore

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def read_raster(path: PathLike) -> Tuple[Raster, Dict[str, Any]]:
    """
    Read all bands of a raster file.

    Pixels equal to the file's nodata value are marked invalid in the
    raster's mask.

    Args:
        path: Path to the raster file

    Returns:
        Tuple of (raster, rasterio profile)
    """
    try:
        import rasterio
    except ImportError:
        raise ImportError("rasterio is required for reading raster files")

    with rasterio.open(path) as src:
        profile = src.profile.copy()
        data = src.read()
        nodata = src.nodata

    mask = None
    if nodata is not None:
        if np.isnan(nodata):
            mask = ~np.isnan(data)
        else:
            mask = data != nodata
    raster = Raster(data, mask=mask)
    logger.debug(f"Read {raster} from {path}")
    return raster, profile


def write_raster(
    path: PathLike,
    raster: Raster,
    profile: Optional[Dict[str, Any]] = None,
    area: Optional[Rectangle] = None,
) -> Path:
    """
    Write a raster as GeoTIFF.

    Args:
        path: Output path
        raster: Raster to write
        profile: Optional rasterio profile of a reference image; its CRS,
            transform and nodata value are kept, size, band count and
            type follow ``raster``
        area: Pixel rectangle of the reference image that ``raster``
            covers; the transform is shifted accordingly

    Returns:
        The output path
    """
    try:
        import rasterio
        from rasterio.windows import Window
        from rasterio.windows import transform as window_transform
    except ImportError:
        raise ImportError("rasterio is required for writing raster files")

    out_profile = {"driver": "GTiff"}
    if profile:
        for key in ("crs", "transform", "nodata", "compress"):
            if profile.get(key) is not None:
                out_profile[key] = profile[key]
        if area is not None and "transform" in out_profile:
            window = Window(area.x, area.y, area.width, area.height)
            out_profile["transform"] = window_transform(window, out_profile["transform"])
    out_profile.update(
        {
            "width": raster.width,
            "height": raster.height,
            "count": raster.channels,
            "dtype": raster.dtype.name,
        }
    )

    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(output_path, "w", **out_profile) as dst:
        dst.write(raster.data)
    logger.info(f"Wrote {raster} to {output_path}")
    return output_path


def load_store(
    entries: Iterable[Tuple[str, int, PathLike]],
    store: Optional[MultiResStore] = None,
) -> Tuple[MultiResStore, Dict[str, Any]]:
    """
    Read (tag, date, path) entries into a store.

    Args:
        entries: Triples of resolution tag, date and file path
        store: Store to add to; a new one is created if None

    Returns:
        Tuple of (store, profile of the first image read)
    """
    store = store if store is not None else MultiResStore()
    first_profile: Dict[str, Any] = {}
    for tag, date, path in entries:
        raster, profile = read_raster(path)
        store.set(tag, date, raster)
        if not first_profile:
            first_profile = profile
    logger.info(f"Loaded {len(store)} images with tags {store.tags}")
    return store, first_profile
