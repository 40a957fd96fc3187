from __future__ import annotations

import os

# Kernels run on the numba CUDA simulator unless NUMBA_ENABLE_CUDASIM=0 is exported.
# Must happen before anything imports numba.
os.environ.setdefault("NUMBA_ENABLE_CUDASIM", "1")

import numpy as np
import pytest


@pytest.fixture
def small_params():
    from planar_tracker import TrackerParams

    return TrackerParams(
        template_half_size=2,
        search_grid_half_count=1,
        search_gap=1,
        sim_threshold=0.8,
        keyframe_index=0,
    )


@pytest.fixture
def textured_template() -> np.ndarray:
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(11, 11)).astype(np.float32)


@pytest.fixture
def intrinsics() -> np.ndarray:
    # with the pose below a world point (x, y, 0) lands on pixel (x + 3, y + 2)
    return np.array([[100.0, 0.0, 3.0], [0.0, 100.0, 2.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def pose() -> np.ndarray:
    return np.array(
        [[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0], [0.0, 0.0, 1.0, 100.0]]
    )
