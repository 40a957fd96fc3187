from __future__ import annotations

from dataclasses import dataclass, field

from .errors import ConfigurationError

TX, TY = 16, 16
SELECT_TH = 64

# Similarity sentinels, all below the NCC range [-1, 1]
NO_VALID_REGION = -2.0
FLAT_POINT = -3.0
FLAT_TEMPLATE = -4.0
VARIANCE_EPS = 1e-7

# Rectified pixel with no source sample in the camera frame
INVALID_PIXEL = -1.0

# Some devices only offer 16-bit float storage; composed transforms can exceed
# that range, so they are uploaded divided by this and scaled back on device.
PRECISION_ADJUST = 1000.0


@dataclass
class TrackerParams:
    template_half_size: int = 6
    template_gap: int = 1
    search_grid_half_count: int = 10
    search_gap: int = 1
    sim_threshold: float = 0.8
    precision_adjust: float = PRECISION_ADJUST
    keyframe_index: int = 1

    template_size: int = field(init=False)
    template_area: int = field(init=False)
    search_extent: int = field(init=False)
    search_size: int = field(init=False)
    candidate_count: int = field(init=False)

    def __post_init__(self) -> None:
        self._validate()
        self.template_size = 2 * self.template_half_size + 1
        self.template_area = self.template_size * self.template_size
        self.search_extent = self.search_grid_half_count * self.search_gap
        self.search_size = 2 * self.search_grid_half_count + 1
        self.candidate_count = self.search_size * self.search_size

    def _validate(self) -> None:
        if self.template_half_size < 1:
            raise ConfigurationError(
                f"template_half_size must be >= 1, got {self.template_half_size}"
            )
        if self.template_gap < 1:
            raise ConfigurationError(f"template_gap must be >= 1, got {self.template_gap}")
        if self.search_grid_half_count < 0:
            raise ConfigurationError(
                f"search_grid_half_count must be >= 0, got {self.search_grid_half_count}"
            )
        if self.search_gap < 1:
            raise ConfigurationError(f"search_gap must be >= 1, got {self.search_gap}")
        if not self.sim_threshold > -1.0:
            raise ConfigurationError(
                f"sim_threshold must exceed the sentinel range (> -1), got {self.sim_threshold}"
            )
        if not self.precision_adjust > 0.0:
            raise ConfigurationError(
                f"precision_adjust must be positive, got {self.precision_adjust}"
            )
        if self.keyframe_index < 0:
            raise ConfigurationError(
                f"keyframe_index must be >= 0, got {self.keyframe_index}"
            )
