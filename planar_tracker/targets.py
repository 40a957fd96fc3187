from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Sequence

import numpy as np
from numba import cuda

from .errors import ConfigurationError

if TYPE_CHECKING:
    from numba.cuda.cudadrv.devicearray import DeviceNDArray

PADDING_POINT = (-1.0, -1.0)


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def _parse_points(raw) -> np.ndarray:
    pts = []
    for p in raw:
        if isinstance(p, Mapping):
            pts.append((float(p["x"]), float(p["y"])))
        else:
            x, y = p
            pts.append((float(x), float(y)))
    return np.array(pts, dtype=np.float32).reshape(-1, 2)


@dataclass(frozen=True)
class TargetKeyframe:
    points: np.ndarray  # (N, 2) keyframe pixel coordinates
    template_pixels: np.ndarray  # (width * height,) row-major
    width: int
    height: int
    scale: float

    @classmethod
    def from_record(cls, record: Mapping) -> "TargetKeyframe":
        """Build from a tracking keyframe record.

        The record carries ``points`` (``{x, y}`` mappings or pairs), the
        template pixels under ``data`` (or ``pixels``), ``width``, ``height``
        and ``scale``.
        """
        try:
            raw_points = record["points"]
            pixels = record["data"] if "data" in record else record["pixels"]
            width = int(record["width"])
            height = int(record["height"])
            scale = float(record["scale"])
        except KeyError as e:
            raise ConfigurationError(f"keyframe record is missing field {e}") from e

        if width <= 0 or height <= 0:
            raise ConfigurationError(f"keyframe size must be positive, got {width}x{height}")
        if not scale > 0.0:
            raise ConfigurationError(f"keyframe scale must be positive, got {scale}")

        points = _parse_points(raw_points)
        if points.shape[0] == 0:
            raise ConfigurationError("keyframe has no feature points")

        template = np.asarray(pixels, dtype=np.float32).ravel()
        if template.size != width * height:
            raise ConfigurationError(
                f"template has {template.size} pixels, expected {width}x{height}={width * height}"
            )

        return cls(
            points=_read_only(points),
            template_pixels=_read_only(template.copy()),
            width=width,
            height=height,
            scale=scale,
        )

    @property
    def world_points(self) -> np.ndarray:
        return self.points / np.float32(self.scale)


@dataclass(frozen=True)
class PaddedFeatureBatch:
    points: np.ndarray  # (capacity, 2) world units, padding slots (-1, -1)
    valid_length: int

    @property
    def capacity(self) -> int:
        return self.points.shape[0]


def pad_feature_points(keyframe: TargetKeyframe, capacity: int) -> PaddedFeatureBatch:
    n = keyframe.points.shape[0]
    if n > capacity:
        raise ValueError(f"{n} feature points exceed batch capacity {capacity}")
    points = np.empty((capacity, 2), dtype=np.float32)
    points[:] = PADDING_POINT
    points[:n] = keyframe.world_points
    return PaddedFeatureBatch(points=_read_only(points), valid_length=n)


@dataclass
class TargetBuffers:
    features: DeviceNDArray  # (max_count, 2) float32
    marker_pixels: DeviceNDArray  # (width * height,) float32
    marker_properties: DeviceNDArray  # width, height, scale


def create_target_buffers(keyframe: TargetKeyframe, batch: PaddedFeatureBatch) -> TargetBuffers:
    props = np.array([keyframe.width, keyframe.height, keyframe.scale], dtype=np.float32)
    return TargetBuffers(
        features=cuda.to_device(batch.points.copy()),
        marker_pixels=cuda.to_device(keyframe.template_pixels.copy()),
        marker_properties=cuda.to_device(props),
    )


class TargetStore:
    """Immutable per-target reference data, host and device side.

    Every target is padded to the same feature capacity so one matching
    kernel fits all of them.
    """

    def __init__(self, keyframes: Sequence[TargetKeyframe]):
        if len(keyframes) == 0:
            raise ConfigurationError("at least one tracking target is required")
        self.keyframes = tuple(keyframes)
        self.max_count = max(k.points.shape[0] for k in self.keyframes)
        self.batches = tuple(pad_feature_points(k, self.max_count) for k in self.keyframes)
        self.buffers = tuple(
            create_target_buffers(k, b) for k, b in zip(self.keyframes, self.batches)
        )

    def __len__(self) -> int:
        return len(self.keyframes)

    def __getitem__(self, target_index: int) -> tuple[TargetKeyframe, TargetBuffers]:
        return self.keyframes[target_index], self.buffers[target_index]

    def check_index(self, target_index: int) -> None:
        if not 0 <= target_index < len(self.keyframes):
            raise IndexError(
                f"target_index {target_index} out of range for {len(self.keyframes)} targets"
            )
