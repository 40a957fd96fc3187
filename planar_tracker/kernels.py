from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import numba
from numba import cuda
from numba.core.errors import NumbaPerformanceWarning

from .cache import KernelCache
from .params import (
    FLAT_POINT,
    FLAT_TEMPLATE,
    INVALID_PIXEL,
    NO_VALID_REGION,
    SELECT_TH,
    TX,
    TY,
    VARIANCE_EPS,
    TrackerParams,
)
from .targets import TargetBuffers, TargetKeyframe

if TYPE_CHECKING:
    from numba.cuda.cudadrv.devicearray import DeviceNDArray

warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

# Projected coordinates beyond this are treated as unsampled before int conversion
COORD_LIMIT = 1.0e7

# Added before truncating a feature centre so p / scale * scale stays on integer p
CENTRE_EPS = 1.0e-4


@dataclass
class MatchingKernels:
    similarity: Callable
    select: Callable


def projection_kernel_key(keyframe: TargetKeyframe, params: TrackerParams) -> tuple:
    return ("projection", keyframe.width, keyframe.height, keyframe.scale, params.precision_adjust)


def matching_kernel_key(feature_count: int, params: TrackerParams) -> tuple:
    return (
        "matching",
        feature_count,
        params.template_half_size,
        params.search_grid_half_count,
        params.search_gap,
    )


def make_projection_kernel(scale: float, precision_adjust: float):
    scale = numba.float32(scale)
    adjust = numba.float32(precision_adjust)
    invalid = numba.float32(INVALID_PIXEL)
    limit = numba.float32(COORD_LIMIT)

    @cuda.jit
    def projection_kernel(M, frame, out):
        x, y = cuda.grid(2)

        ho, wo = out.shape
        if x >= wo or y >= ho:
            return

        hi, wi = frame.shape

        m00 = M[0, 0] * adjust
        m01 = M[0, 1] * adjust
        m03 = M[0, 3] * adjust
        m10 = M[1, 0] * adjust
        m11 = M[1, 1] * adjust
        m13 = M[1, 3] * adjust
        m20 = M[2, 0] * adjust
        m21 = M[2, 1] * adjust
        m23 = M[2, 3] * adjust

        wx = numba.float32(x) / scale
        wy = numba.float32(y) / scale

        uz = wx * m20 + wy * m21 + m23
        if uz == 0.0:
            out[y, x] = invalid
            return
        one_over_uz = numba.float32(1.0) / uz

        ux = (wx * m00 + wy * m01 + m03) * one_over_uz
        uy = (wx * m10 + wy * m11 + m13) * one_over_uz

        # also rejects nan and inf
        if not (ux > -limit and ux < limit and uy > -limit and uy < limit):
            out[y, x] = invalid
            return

        px = int(math.floor(ux + numba.float32(0.5)))
        py = int(math.floor(uy + numba.float32(0.5)))
        if px < 0 or px >= wi or py < 0 or py >= hi:
            out[y, x] = invalid
            return

        out[y, x] = frame[py, px]

    return projection_kernel


def make_matching_kernels(feature_count: int, params: TrackerParams) -> MatchingKernels:
    half = params.template_half_size
    template_size = params.template_size
    search_size = params.search_size
    search_gap = params.search_gap
    search_extent = params.search_extent
    n_candidates = params.candidate_count
    count = numba.float32(params.template_area)
    eps = numba.float32(VARIANCE_EPS)
    centre_eps = numba.float32(CENTRE_EPS)

    @cuda.jit
    def similarity_kernel(features, marker_pixels, marker_properties, projected, sims):
        c, f = cuda.grid(2)
        if c >= n_candidates or f >= feature_count:
            return

        marker_width = int(marker_properties[0])
        marker_height = int(marker_properties[1])
        marker_scale = marker_properties[2]
        target_height, target_width = projected.shape

        cx = int(features[f, 0] * marker_scale + centre_eps)
        cy = int(features[f, 1] * marker_scale + centre_eps)

        sx = cx + (c % search_size) * search_gap - search_extent
        sy = cy + (c // search_size) * search_gap - search_extent

        if (
            sx < half
            or sx >= target_width - half
            or sy < half
            or sy >= target_height - half
            or cx < half
            or cx >= marker_width - half
            or cy < half
            or cy >= marker_height - half
        ):
            sims[f, c] = NO_VALID_REGION
            return

        sum_point = numba.float32(0.0)
        sum_point_sq = numba.float32(0.0)
        sum_template = numba.float32(0.0)
        sum_template_sq = numba.float32(0.0)
        sum_point_template = numba.float32(0.0)
        unsampled = 0

        for ty in range(template_size):
            for tx in range(template_size):
                marker_pixel = marker_pixels[(cy + ty - half) * marker_width + cx + tx - half]
                point_pixel = projected[sy + ty - half, sx + tx - half]
                if point_pixel < 0.0:
                    unsampled += 1

                sum_template += marker_pixel
                sum_template_sq += marker_pixel * marker_pixel
                sum_point += point_pixel
                sum_point_sq += point_pixel * point_pixel
                sum_point_template += point_pixel * marker_pixel

        if unsampled > 0:
            sims[f, c] = NO_VALID_REGION
            return

        # divide first, sum * sum overflows at low precision
        point_var = sum_point_sq - sum_point / count * sum_point
        template_var = sum_template_sq - sum_template / count * sum_template
        point_var = math.sqrt(point_var) if point_var > 0.0 else 0.0
        template_var = math.sqrt(template_var) if template_var > 0.0 else 0.0

        if point_var < eps:
            sims[f, c] = FLAT_POINT
        elif template_var < eps:
            sims[f, c] = FLAT_TEMPLATE
        else:
            sim = (sum_point_template - sum_point / count * sum_template) / point_var / template_var
            if sim > 1.0:
                sim = 1.0
            elif sim < -1.0:
                sim = -1.0
            sims[f, c] = sim

    @cuda.jit
    def select_kernel(features, marker_properties, sims, matching_points, best_sims):
        f = cuda.grid(1)
        if f >= feature_count:
            return

        marker_scale = marker_properties[2]

        # strict > keeps the first maximum in row-major order
        best_index = 0
        best = sims[f, 0]
        for c in range(1, n_candidates):
            s = sims[f, c]
            if s > best:
                best = s
                best_index = c

        dx = (best_index % search_size) * search_gap - search_extent
        dy = (best_index // search_size) * search_gap - search_extent
        matching_points[f, 0] = features[f, 0] + numba.float32(dx) / marker_scale
        matching_points[f, 1] = features[f, 1] + numba.float32(dy) / marker_scale
        best_sims[f] = best

    return MatchingKernels(similarity=similarity_kernel, select=select_kernel)


def get_projection_kernel(cache: KernelCache, keyframe: TargetKeyframe, params: TrackerParams):
    return cache.get_or_build(
        projection_kernel_key(keyframe, params),
        lambda: make_projection_kernel(keyframe.scale, params.precision_adjust),
    )


def get_matching_kernels(
    cache: KernelCache, feature_count: int, params: TrackerParams
) -> MatchingKernels:
    return cache.get_or_build(
        matching_kernel_key(feature_count, params),
        lambda: make_matching_kernels(feature_count, params),
    )


def compute_projection(kernel, transform: DeviceNDArray, frame: DeviceNDArray, out: DeviceNDArray, stream):
    ho, wo = out.shape
    grid = ((wo + TX - 1) // TX, (ho + TY - 1) // TY)
    kernel[grid, (TX, TY), stream](transform, frame, out)


def compute_matching(
    kernels: MatchingKernels,
    target: TargetBuffers,
    projected: DeviceNDArray,
    sims: DeviceNDArray,
    matching_points: DeviceNDArray,
    best_sims: DeviceNDArray,
    stream,
):
    feature_count, n_candidates = sims.shape
    if target.features.shape[0] != feature_count:
        raise ValueError(
            f"sims has {feature_count} feature rows, target batch has {target.features.shape[0]}"
        )
    grid = ((n_candidates + TX - 1) // TX, (feature_count + TY - 1) // TY)
    kernels.similarity[grid, (TX, TY), stream](
        target.features,
        target.marker_pixels,
        target.marker_properties,
        projected,
        sims,
    )
    blocks = (feature_count + SELECT_TH - 1) // SELECT_TH
    kernels.select[blocks, SELECT_TH, stream](
        target.features,
        target.marker_properties,
        sims,
        matching_points,
        best_sims,
    )
