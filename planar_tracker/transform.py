from __future__ import annotations

from typing import Optional

import numpy as np

from .errors import ConfigurationError

SCREEN_EPS = 1e-6


def check_projection_transform(projection) -> np.ndarray:
    P = np.asarray(projection, dtype=np.float64)
    if P.shape not in ((3, 3), (3, 4)):
        raise ConfigurationError(f"projection transform must be 3x3 or 3x4, got {P.shape}")
    return P


def build_model_view_projection_transform(projection, model_view) -> np.ndarray:
    """Compose camera projection and model pose into a 3x4 transform.

    ``projection`` is either 3x3 intrinsics or a 3x4 projection matrix acting
    on homogeneous camera coordinates.
    """
    P = np.asarray(projection, dtype=np.float64)
    M = np.asarray(model_view, dtype=np.float64)
    if M.shape != (3, 4):
        raise ValueError(f"model view transform must be 3x4, got {M.shape}")
    if P.shape == (3, 3):
        return P @ M
    if P.shape == (3, 4):
        return P @ np.vstack([M, [0.0, 0.0, 0.0, 1.0]])
    raise ValueError(f"projection transform must be 3x3 or 3x4, got {P.shape}")


def build_adjusted_transform(mvp: np.ndarray, precision_adjust: float) -> np.ndarray:
    # divided here, multiplied back inside the projection kernel
    return (np.asarray(mvp, dtype=np.float64) / precision_adjust).astype(np.float32)


def compute_screen_coordinate(
    mvp: np.ndarray, x: float, y: float, z: float = 0.0
) -> Optional[tuple[float, float]]:
    ux = mvp[0, 0] * x + mvp[0, 1] * y + mvp[0, 2] * z + mvp[0, 3]
    uy = mvp[1, 0] * x + mvp[1, 1] * y + mvp[1, 2] * z + mvp[1, 3]
    uz = mvp[2, 0] * x + mvp[2, 1] * y + mvp[2, 2] * z + mvp[2, 3]
    if abs(uz) < SCREEN_EPS:
        return None
    return float(ux / uz), float(uy / uz)
