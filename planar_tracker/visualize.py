from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .params import INVALID_PIXEL


def render_projected_image(projected: np.ndarray) -> np.ndarray:
    """uint8 view of a rectified frame; unsampled pixels are black."""
    img = np.asarray(projected, dtype=np.float32)
    valid = img > INVALID_PIXEL
    out = np.zeros(img.shape, dtype=np.uint8)
    if not valid.any():
        return out
    lo = float(img[valid].min())
    hi = float(img[valid].max())
    span = hi - lo if hi > lo else 1.0
    out[valid] = np.clip((img[valid] - lo) * (255.0 / span), 0, 255).astype(np.uint8)
    return out


def draw_tracked_points(
    frame: np.ndarray,
    screen_coords: np.ndarray,
    *,
    color: tuple[int, int, int] = (0, 255, 0),
    radius: int = 3,
    thickness: int = -1,
    candidates: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Draw accepted screen coordinates (and optionally rejected candidates) on a copy of ``frame``.

    frame: grayscale or BGR image
    screen_coords: (N, 2) xy pixel coordinates
    candidates: optional (M, 2) xy pixel coordinates drawn as hollow red circles
    """
    if frame.ndim == 2:
        canvas = cv2.cvtColor(np.clip(frame, 0, 255).astype(np.uint8), cv2.COLOR_GRAY2BGR)
    else:
        canvas = np.clip(frame, 0, 255).astype(np.uint8)

    if candidates is not None:
        for x, y in np.asarray(candidates).reshape(-1, 2):
            if not (np.isfinite(x) and np.isfinite(y)):
                continue
            p = (int(round(float(x))), int(round(float(y))))
            cv2.circle(canvas, p, radius, (0, 0, 255), 1, lineType=cv2.LINE_AA)

    for x, y in np.asarray(screen_coords).reshape(-1, 2):
        p = (int(round(float(x))), int(round(float(y))))
        cv2.circle(canvas, p, radius, color, thickness, lineType=cv2.LINE_AA)
    return canvas
