import numpy as np
import pytest

from planar_tracker import (
    FLAT_POINT,
    FLAT_TEMPLATE,
    INVALID_PIXEL,
    NO_VALID_REGION,
    TrackerParams,
)
from planar_tracker.targets import TargetStore

from helpers_targets import make_keyframe, run_matching

SENTINELS = (NO_VALID_REGION, FLAT_POINT, FLAT_TEMPLATE)


def test_identical_gradient_patch_scores_one(small_params):
    template = np.arange(25, dtype=np.float32).reshape(5, 5)
    store = TargetStore([make_keyframe(template, [(2, 2)])])

    sims, points, best = run_matching(small_params, store, template)

    assert best[0] == pytest.approx(1.0, abs=1e-5)
    np.testing.assert_allclose(points[0], [2.0, 2.0])
    # only the centre candidate keeps the window inside a 5x5 image
    centre = small_params.candidate_count // 2
    others = np.delete(sims[0], centre)
    assert np.all(others == NO_VALID_REGION)


@pytest.mark.parametrize("search_gap", [1, 2])
@pytest.mark.parametrize("scale", [1.0, 2.0])
def test_shift_by_search_gap_is_recovered(textured_template, search_gap, scale):
    params = TrackerParams(template_half_size=2, search_grid_half_count=2, search_gap=search_gap)
    keyframe = make_keyframe(textured_template, [(5, 5)], scale=scale)
    store = TargetStore([keyframe])
    shifted = np.roll(textured_template, search_gap, axis=1)

    _, points, best = run_matching(params, store, shifted)

    assert best[0] == pytest.approx(1.0, abs=1e-5)
    offset = points[0] - keyframe.world_points[0]
    np.testing.assert_allclose(offset, [search_gap / scale, 0.0], atol=1e-6)


def test_flat_rectified_window_gives_flat_point(small_params, textured_template):
    store = TargetStore([make_keyframe(textured_template, [(5, 5)])])
    flat = np.full_like(textured_template, 100.0)

    sims, _, best = run_matching(small_params, store, flat)

    assert np.all(sims[0] == FLAT_POINT)
    assert best[0] == FLAT_POINT


def test_flat_template_gives_flat_template(small_params, textured_template):
    template = np.full((11, 11), 42.0, dtype=np.float32)
    store = TargetStore([make_keyframe(template, [(5, 5)])])

    sims, _, best = run_matching(small_params, store, textured_template)

    assert np.all(sims[0] == FLAT_TEMPLATE)
    assert best[0] == FLAT_TEMPLATE


def test_flat_point_checked_before_flat_template(small_params):
    template = np.full((11, 11), 42.0, dtype=np.float32)
    store = TargetStore([make_keyframe(template, [(5, 5)])])

    sims, _, _ = run_matching(small_params, store, template)

    assert np.all(sims[0] == FLAT_POINT)


def test_unsampled_pixels_invalidate_window(small_params, textured_template):
    store = TargetStore([make_keyframe(textured_template, [(5, 5)])])
    projected = textured_template.copy()
    projected[5, 5] = INVALID_PIXEL

    sims, _, best = run_matching(small_params, store, projected)

    # every 5x5 window around (5 +- 1, 5 +- 1) covers the centre pixel
    assert np.all(sims[0] == NO_VALID_REGION)
    assert best[0] == NO_VALID_REGION


def test_feature_near_template_border_has_no_valid_region(small_params, textured_template):
    store = TargetStore([make_keyframe(textured_template, [(1, 5)])])

    sims, _, _ = run_matching(small_params, store, textured_template)

    assert np.all(sims[0] == NO_VALID_REGION)


def test_similarity_bounded_or_sentinel(textured_template):
    params = TrackerParams(template_half_size=2, search_grid_half_count=2, search_gap=1)
    rng = np.random.default_rng(3)
    points = [(4, 4), (5, 6), (6, 5), (2, 8)]
    store = TargetStore([make_keyframe(textured_template, points)])
    projected = rng.integers(0, 256, size=(11, 11)).astype(np.float32)

    sims, _, _ = run_matching(params, store, projected)

    real = sims[~np.isin(sims, SENTINELS)]
    assert real.size > 0
    assert np.all(real >= -1.0) and np.all(real <= 1.0)


@pytest.mark.parametrize("scale", [1.0, 0.5, 2.0])
def test_refined_location_on_search_grid(textured_template, scale):
    params = TrackerParams(template_half_size=2, search_grid_half_count=2, search_gap=2)
    rng = np.random.default_rng(11)
    keyframe = make_keyframe(textured_template, [(4, 4), (5, 6), (6, 5)], scale=scale)
    store = TargetStore([keyframe])
    projected = rng.integers(0, 256, size=(11, 11)).astype(np.float32)

    _, points, _ = run_matching(params, store, projected)

    steps = (points - keyframe.world_points) * scale / params.search_gap
    np.testing.assert_allclose(steps, np.round(steps), atol=1e-4)
    assert np.all(np.abs(np.round(steps)) <= params.search_grid_half_count)


def test_ties_resolved_to_first_candidate():
    # period-2 pattern: with search_gap 2 every candidate window is identical
    tile = np.array([[10.0, 50.0], [90.0, 30.0]], dtype=np.float32)
    pattern = np.tile(tile, (6, 6))[:11, :11].copy()
    params = TrackerParams(template_half_size=2, search_grid_half_count=1, search_gap=2)
    keyframe = make_keyframe(pattern, [(5, 5)])
    store = TargetStore([keyframe])

    sims, points, best = run_matching(params, store, pattern)

    assert np.all(sims[0] == sims[0, 0])
    assert best[0] == sims[0, 0]
    np.testing.assert_allclose(points[0], [3.0, 3.0])


def test_padding_slots_never_match(small_params, textured_template):
    store = TargetStore(
        [
            make_keyframe(textured_template, [(5, 5)]),
            make_keyframe(textured_template, [(4, 4), (5, 5), (6, 6)]),
        ]
    )
    assert store.max_count == 3

    sims, _, best = run_matching(small_params, store, textured_template, target_index=0)

    assert sims.shape == (3, small_params.candidate_count)
    assert best[0] == pytest.approx(1.0, abs=1e-5)
    assert np.all(sims[1:] == NO_VALID_REGION)


def test_fractional_feature_centre_truncates(textured_template):
    params = TrackerParams(template_half_size=2, search_grid_half_count=0)
    # 8.5 truncates to column 8, whose 6..10 window still fits an 11 wide template
    store = TargetStore([make_keyframe(textured_template, [(8.5, 5)])])

    _, points, best = run_matching(params, store, textured_template)

    assert best[0] == pytest.approx(1.0, abs=1e-5)
    np.testing.assert_allclose(points[0], [8.5, 5.0])


@pytest.mark.parametrize("scale", [0.3, 0.7, 1.0 / 3.0])
def test_integer_features_at_margin_survive_scale_round_trip(textured_template, scale):
    params = TrackerParams(template_half_size=2, search_grid_half_count=0)
    store = TargetStore([make_keyframe(textured_template, [(2, 2), (8, 8), (2, 8)], scale=scale)])

    _, _, best = run_matching(params, store, textured_template)

    np.testing.assert_allclose(best, 1.0, atol=1e-5)
