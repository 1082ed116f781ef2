"""
Pytest configuration and fixtures for stfusion tests.

Markers:
    @pytest.mark.starfm - Similarity-weighted algorithm tests
    @pytest.mark.estarfm - Regression-enhanced algorithm tests
    @pytest.mark.parallel - Parallel driver tests
    @pytest.mark.slow - Tests that take longer to run
    @pytest.mark.integration - Tests touching files or the CLI

Usage:
    pytest -m starfm              # Run only STARFM tests
    pytest -m "not slow"          # Skip slow tests
    pytest -m "parallel and not slow"
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "starfm: Similarity-weighted fusion tests")
    config.addinivalue_line("markers", "estarfm: Regression-enhanced fusion tests")
    config.addinivalue_line("markers", "parallel: Parallel driver tests")
    config.addinivalue_line("markers", "slow: Slow-running tests")
    config.addinivalue_line("markers", "integration: File and CLI tests")


def pytest_collection_modifyitems(config, items):
    """Auto-apply markers based on test file names and test names."""
    for item in items:
        basename = item.fspath.basename
        if "estarfm" in basename:
            item.add_marker(pytest.mark.estarfm)
        elif "starfm" in basename:
            item.add_marker(pytest.mark.starfm)
        if "parallel" in basename:
            item.add_marker(pytest.mark.parallel)
        if basename in ("test_io.py", "test_cli.py"):
            item.add_marker(pytest.mark.integration)

        test_name = item.name.lower()
        if "large" in test_name or "stress" in test_name:
            item.add_marker(pytest.mark.slow)


def _coarsen(image, block=3):
    """Block-average each band and repeat it back to full size."""
    import numpy as np

    bands, height, width = image.shape
    padded_h = -(-height // block) * block
    padded_w = -(-width // block) * block
    padded = np.pad(image, ((0, 0), (0, padded_h - height), (0, padded_w - width)), mode="edge")
    blocks = padded.reshape(bands, padded_h // block, block, padded_w // block, block).mean(axis=(2, 4))
    upsampled = np.repeat(np.repeat(blocks, block, axis=1), block, axis=2)
    return upsampled[:, :height, :width]


@pytest.fixture
def make_scene():
    """
    Factory for a synthetic fusion scene.

    Returns a function building a dict with arrays ``high1``, ``low1``,
    ``low2``, ``high2`` (ground truth), ``high3`` and ``low3``, all shaped
    (channels, height, width). Low resolution images are block averages of
    the high resolution ones.

    The surface changes linearly over the dates 1, 2 and 3: a smooth trend
    visible at low resolution plus fine detail that averages out within each
    low resolution block, with a little acquisition noise on top.
    """
    import numpy as np

    def _make(width=14, height=11, channels=1, dtype=np.float64, seed=42):
        rng = np.random.default_rng(seed)
        rows, cols = np.mgrid[0:height, 0:width]
        scene = {}
        base = np.stack(
            [
                80 + 30 * np.sin(cols / 3.0 + c) + 20 * np.cos(rows / 4.0) + rng.uniform(0, 25, (height, width))
                for c in range(channels)
            ]
        )
        trend = 8 + 0.2 * cols
        detail = rng.normal(0, 4, base.shape)
        detail -= _coarsen(detail)
        scene["high1"] = base
        scene["high2"] = base + trend + 0.5 * detail + rng.normal(0, 0.5, base.shape)
        scene["high3"] = base + 2 * trend + detail + rng.normal(0, 0.5, base.shape)
        for date in (1, 2, 3):
            scene[f"low{date}"] = _coarsen(scene[f"high{date}"])

        if np.issubdtype(np.dtype(dtype), np.integer):
            scene = {k: np.rint(v).astype(dtype) for k, v in scene.items()}
        else:
            scene = {k: v.astype(dtype) for k, v in scene.items()}
        return scene

    return _make


@pytest.fixture
def make_store():
    """Factory turning a scene dict into a MultiResStore with tags 'high' and 'low'."""

    def _make(scene, dates=(1, 2, 3)):
        from stfusion.core.raster import Raster
        from stfusion.core.store import MultiResStore

        store = MultiResStore()
        for date in dates:
            if date != 2:
                store.set("high", date, Raster(scene[f"high{date}"]))
            store.set("low", date, Raster(scene[f"low{date}"]))
        return store

    return _make


@pytest.fixture
def scene(make_scene):
    """Default single channel float scene."""
    return make_scene()


@pytest.fixture
def store(make_store, scene):
    """Store of the default scene with dates 1, 2 and 3."""
    return make_store(scene)
