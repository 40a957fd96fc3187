from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence

import numpy as np
from numba import cuda

from .cache import KernelCache
from .errors import ConfigurationError
from .image import to_gray_bt709
from .kernels import (
    compute_matching,
    compute_projection,
    get_matching_kernels,
    get_projection_kernel,
)
from .params import TrackerParams
from .targets import PaddedFeatureBatch, TargetKeyframe, TargetStore
from .transform import (
    build_adjusted_transform,
    build_model_view_projection_transform,
    check_projection_transform,
    compute_screen_coordinate,
)

if TYPE_CHECKING:
    from numba.cuda.cudadrv.devicearray import DeviceNDArray

logger = logging.getLogger(__name__)

DUMMY_MODEL_VIEW = np.ones((3, 4), dtype=np.float64)


@dataclass
class DebugExtra:
    projected_image: np.ndarray  # rectified frame, (height, width)
    matching_points: np.ndarray  # refined location of every slot, padding included
    good_track: List[int]
    tracked_points: np.ndarray  # accepted screen coordinates


@dataclass
class TrackResult:
    world_coords: np.ndarray  # (N, 3)
    screen_coords: np.ndarray  # (N, 2), index-aligned with world_coords
    debug_extra: Optional[DebugExtra] = None

    def __len__(self) -> int:
        return self.world_coords.shape[0]


@dataclass
class FrameData:
    transform: Optional[DeviceNDArray]
    frame: Optional[DeviceNDArray]
    projected: Optional[DeviceNDArray]
    sims: Optional[DeviceNDArray]
    matching_points: Optional[DeviceNDArray]
    best_sims: Optional[DeviceNDArray]

    def release(self) -> None:
        for f in fields(self):
            setattr(self, f.name, None)


def create_frame_data(
    keyframe: TargetKeyframe,
    feature_count: int,
    params: TrackerParams,
    transform: np.ndarray,
    frame: np.ndarray,
    stream,
) -> FrameData:
    return FrameData(
        transform=cuda.to_device(transform, stream=stream),
        frame=cuda.to_device(frame, stream=stream),
        projected=cuda.device_array((keyframe.height, keyframe.width), np.float32, stream=stream),
        sims=cuda.device_array((feature_count, params.candidate_count), np.float32, stream=stream),
        matching_points=cuda.device_array((feature_count, 2), np.float32, stream=stream),
        best_sims=cuda.device_array(feature_count, np.float32, stream=stream),
    )


@contextmanager
def frame_scope(
    keyframe: TargetKeyframe,
    feature_count: int,
    params: TrackerParams,
    transform: np.ndarray,
    frame: np.ndarray,
    stream,
) -> Iterator[FrameData]:
    """Per-frame device buffers, dropped on every exit path."""
    data = create_frame_data(keyframe, feature_count, params, transform, frame, stream)
    try:
        yield data
    finally:
        data.release()


def extract_correspondences(
    keyframe: TargetKeyframe,
    mvp: np.ndarray,
    matching_points: np.ndarray,
    sims: np.ndarray,
    sim_threshold: float,
    batch: PaddedFeatureBatch,
) -> tuple[np.ndarray, np.ndarray, List[int]]:
    """Pair accepted matches with the original world coordinates of their features.

    Only the first ``batch.valid_length`` slots are considered, padding never is.
    Returns world coords (N, 3), screen coords (N, 2) and the accepted slot indices.
    """
    world: List[tuple[float, float, float]] = []
    screen: List[tuple[float, float]] = []
    good_track: List[int] = []

    scale = keyframe.scale
    for i in range(batch.valid_length):
        if not sims[i] > sim_threshold:
            continue
        point = compute_screen_coordinate(
            mvp, float(matching_points[i, 0]), float(matching_points[i, 1])
        )
        if point is None:
            continue
        good_track.append(i)
        screen.append(point)
        world.append(
            (float(keyframe.points[i, 0]) / scale, float(keyframe.points[i, 1]) / scale, 0.0)
        )

    return (
        np.array(world, dtype=np.float64).reshape(-1, 3),
        np.array(screen, dtype=np.float64).reshape(-1, 2),
        good_track,
    )


class Tracker:
    """Per-frame 2D/3D correspondences for planar image targets.

    Projects each target into the camera frame with a prior pose, refines
    every feature with a strided NCC search and keeps the matches above
    ``params.sim_threshold``. The pose itself is solved elsewhere.
    """

    def __init__(
        self,
        marker_dimensions: Sequence[Sequence[float]],
        tracking_data_list: Sequence[Sequence[dict]],
        projection_transform,
        input_width: int,
        input_height: int,
        debug_mode: bool = False,
        params: Optional[TrackerParams] = None,
        kernel_cache: Optional[KernelCache] = None,
    ):
        self.params = params if params is not None else TrackerParams()

        if len(marker_dimensions) != len(tracking_data_list):
            raise ConfigurationError(
                f"got {len(marker_dimensions)} marker dimensions for "
                f"{len(tracking_data_list)} tracking datasets"
            )
        if input_width <= 0 or input_height <= 0:
            raise ConfigurationError(
                f"input size must be positive, got {input_width}x{input_height}"
            )

        self.marker_dimensions = [tuple(d) for d in marker_dimensions]
        self.projection_transform = check_projection_transform(projection_transform)
        self.input_width = int(input_width)
        self.input_height = int(input_height)
        self.debug_mode = debug_mode

        keyframes = [
            self._select_keyframe(i, data) for i, data in enumerate(tracking_data_list)
        ]
        self.store = TargetStore(keyframes)
        self.kernel_cache = kernel_cache if kernel_cache is not None else KernelCache()
        self._stream = cuda.stream()

        logger.info(
            "tracker ready: %d targets, %d feature slots per target",
            len(self.store),
            self.store.max_count,
        )

    def _select_keyframe(self, target_index: int, tracking_data: Sequence[dict]) -> TargetKeyframe:
        k = self.params.keyframe_index
        if len(tracking_data) <= k:
            raise ConfigurationError(
                f"target {target_index}: keyframe {k} requested, "
                f"dataset has {len(tracking_data)} keyframes"
            )
        try:
            return TargetKeyframe.from_record(tracking_data[k])
        except ConfigurationError as e:
            raise ConfigurationError(f"target {target_index}: {e}") from e

    @property
    def num_targets(self) -> int:
        return len(self.store)

    def _prepare_frame(self, frame: np.ndarray) -> np.ndarray:
        gray = to_gray_bt709(frame)
        if gray.shape != (self.input_height, self.input_width):
            raise ValueError(
                f"frame shape {gray.shape} does not match input size "
                f"{(self.input_height, self.input_width)}"
            )
        if not np.isfinite(gray).all():
            raise ValueError("frame intensities must be finite")
        if gray.size and gray.min() < 0.0:
            raise ValueError("frame intensities must be non-negative")
        return np.ascontiguousarray(gray, dtype=np.float32)

    def track(self, frame: np.ndarray, last_model_view_transform, target_index: int) -> TrackResult:
        self.store.check_index(target_index)
        gray = self._prepare_frame(frame)
        keyframe, target = self.store[target_index]
        batch = self.store.batches[target_index]
        feature_count = self.store.max_count

        mvp = build_model_view_projection_transform(
            self.projection_transform, last_model_view_transform
        )
        adjusted = build_adjusted_transform(mvp, self.params.precision_adjust)

        projection_kernel = get_projection_kernel(self.kernel_cache, keyframe, self.params)
        matching_kernels = get_matching_kernels(self.kernel_cache, feature_count, self.params)

        stream = self._stream
        projected = None
        with frame_scope(keyframe, feature_count, self.params, adjusted, gray, stream) as data:
            compute_projection(projection_kernel, data.transform, data.frame, data.projected, stream)
            compute_matching(
                matching_kernels,
                target,
                data.projected,
                data.sims,
                data.matching_points,
                data.best_sims,
                stream,
            )
            matching_points = data.matching_points.copy_to_host(stream=stream)
            sims = data.best_sims.copy_to_host(stream=stream)
            if self.debug_mode:
                projected = data.projected.copy_to_host(stream=stream)
            stream.synchronize()

        world_coords, screen_coords, good_track = extract_correspondences(
            keyframe, mvp, matching_points, sims, self.params.sim_threshold, batch
        )
        logger.debug(
            "target %d: %d/%d features accepted",
            target_index,
            len(good_track),
            batch.valid_length,
        )

        debug_extra = None
        if self.debug_mode:
            debug_extra = DebugExtra(
                projected_image=projected,
                matching_points=matching_points,
                good_track=good_track,
                tracked_points=screen_coords.copy(),
            )
        return TrackResult(world_coords, screen_coords, debug_extra)

    def dummy_run(self, frame: np.ndarray) -> None:
        """Track every target once with a fixed pose so all kernels get compiled."""
        for target_index in range(len(self.store)):
            self.track(frame, DUMMY_MODEL_VIEW, target_index)
        logger.debug("warm-up done for %d targets", len(self.store))
