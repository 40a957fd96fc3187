from __future__ import annotations

import cv2
import numpy as np

W709_BGR = np.array(
    [0.072192315360734, 0.715168678767756, 0.212639005871510], dtype=np.float32
)


def to_gray_bt709(img: np.ndarray) -> np.ndarray:
    """Single-channel float32 intensities, BGR input weighted with BT.709."""
    img = np.asarray(img)
    if img.ndim == 2:
        return img.astype(np.float32, copy=False)
    if img.ndim == 3 and img.shape[2] == 1:
        return img[:, :, 0].astype(np.float32)
    if img.ndim == 3 and img.shape[2] == 3:
        return (img.astype(np.float32) * W709_BGR).sum(axis=2)
    raise ValueError(f"expected a grayscale or BGR image, got shape {img.shape}")


def read_gray_bt709(path: str) -> np.ndarray:
    im = cv2.imdecode(np.fromfile(path, np.uint8), cv2.IMREAD_COLOR)
    if im is None:
        raise ValueError(f"could not decode image {path}")
    return to_gray_bt709(im)
