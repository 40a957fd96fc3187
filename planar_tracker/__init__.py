"""
Planar image target tracking on CUDA via numba.

Each frame, a target's reference image is projected into the camera frame
with the previous pose, every feature is refined with a strided normalized
cross-correlation search, and the matches above threshold are returned as
world/screen correspondences for an external pose solver.

    tracker = Tracker(marker_dimensions, tracking_data_list, K, 640, 480)
    tracker.dummy_run(frame)
    result = tracker.track(frame, last_model_view_transform, target_index=0)
"""
from .cache import KernelCache
from .errors import ConfigurationError
from .params import (
    FLAT_POINT,
    FLAT_TEMPLATE,
    INVALID_PIXEL,
    NO_VALID_REGION,
    TrackerParams,
)
from .targets import PaddedFeatureBatch, TargetKeyframe, TargetStore
from .tracker import DebugExtra, TrackResult, Tracker

__all__ = [
    "ConfigurationError",
    "DebugExtra",
    "FLAT_POINT",
    "FLAT_TEMPLATE",
    "INVALID_PIXEL",
    "KernelCache",
    "NO_VALID_REGION",
    "PaddedFeatureBatch",
    "TargetKeyframe",
    "TargetStore",
    "TrackResult",
    "Tracker",
    "TrackerParams",
]
