"""
Tests for the anchors module.
"""

import threading

import numpy as np
import pytest

from retinadecode.anchors import (
    Anchor,
    AnchorCache,
    expand_anchors,
    generate_anchors,
    generate_anchors_fpn,
)
from retinadecode.config import DEFAULT_ANCHORS, StrideConfig
from retinadecode.errors import ShapeMismatchError


def test_single_ratio_single_scale_is_base_anchor():
    """ratios=[1], scales=[1] yields exactly the base square anchor."""
    anchors = generate_anchors(16, [1.0], [1.0])
    assert anchors == [Anchor(0.0, 0.0, 15.0, 15.0)]


def test_anchor_geometry_is_inclusive():
    """Width/height count both edge pixels; center is the midpoint."""
    anchor = Anchor(0.0, 0.0, 15.0, 15.0)
    assert anchor.width == 16.0
    assert anchor.height == 16.0
    assert anchor.center_x == 7.5
    assert anchor.center_y == 7.5


def test_retinaface_stride32_anchors():
    """Reference stride-32 anchors match the published RetinaFace values."""
    anchors = generate_anchors(16, [1.0], [32.0, 16.0])
    assert [a.as_tuple() for a in anchors] == [
        (-248.0, -248.0, 263.0, 263.0),
        (-120.0, -120.0, 135.0, 135.0),
    ]


def test_anchor_count_is_ratios_times_scales():
    """Cardinality equals len(ratios) * len(scales), ratio-major order."""
    anchors = generate_anchors(16, [0.5, 1.0, 2.0], [1.0, 2.0])
    assert len(anchors) == 6
    # Scale variants of one ratio share a center and aspect ratio.
    first, second = anchors[0], anchors[1]
    assert first.center_x == pytest.approx(second.center_x)
    assert second.width == pytest.approx(2 * first.width)


def test_ratio_rounding_is_half_away_from_zero():
    """10.5 rounds to 11, not to the even neighbour."""
    # base 15: area 225 / 0.5 = 450 -> ws = round(21.21) = 21, hs = round(10.5) = 11
    anchors = generate_anchors(15, [0.5], [1.0])
    assert anchors == [Anchor(-3.0, 2.0, 17.0, 12.0)]


def test_generate_anchors_fpn_keys_by_stride():
    """Every configured stride gets its own canonical anchors."""
    anchors_fpn = generate_anchors_fpn(DEFAULT_ANCHORS)
    assert set(anchors_fpn) == {32, 16, 8}
    assert all(len(v) == 2 for v in anchors_fpn.values())
    assert anchors_fpn[8][1] == Anchor(0.0, 0.0, 15.0, 15.0)


def test_expand_count_and_origin_cell():
    """Grid has H * W * A entries; cell (0, 0) holds the unshifted anchors."""
    canonical = generate_anchors(16, [1.0], [2.0, 1.0])
    grid = expand_anchors(canonical, stride=8, height=3, width=4)

    assert grid.shape == (3 * 4 * 2, 4)
    for k, anchor in enumerate(canonical):
        np.testing.assert_allclose(grid[k], anchor.as_tuple())


def test_expand_enumeration_order():
    """Flat index (ih * W + iw) * A + k is shifted by (iw * s, ih * s)."""
    canonical = generate_anchors(16, [1.0], [2.0, 1.0])
    stride, height, width = 16, 2, 3
    grid = expand_anchors(canonical, stride, height, width)

    ih, iw, k = 1, 2, 1
    expected = np.array(canonical[k].as_tuple()) + np.array(
        [iw * stride, ih * stride, iw * stride, ih * stride]
    )
    np.testing.assert_allclose(grid[(ih * width + iw) * 2 + k], expected)


def test_cache_reuses_grid():
    """Same key returns the same read-only grid object."""
    cache = AnchorCache(generate_anchors_fpn([StrideConfig(stride=16, scales=(1.0,))]))

    first = cache.get(16, 64, 64, 4, 4)
    second = cache.get(16, 64, 64, 4, 4)

    assert first is second
    assert len(cache) == 1
    assert len(first) == 16
    assert not first.anchors.flags.writeable


def test_cache_rejects_spatial_mismatch():
    """A tensor of a different size under the same key aborts the call."""
    cache = AnchorCache(generate_anchors_fpn([StrideConfig(stride=16, scales=(1.0,))]))
    cache.get(16, 64, 64, 4, 4)

    with pytest.raises(ShapeMismatchError, match="stride 16"):
        cache.get(16, 64, 64, 5, 4)


def test_cache_concurrent_population():
    """Concurrent lookups of one key agree on a single grid."""
    cache = AnchorCache(generate_anchors_fpn(DEFAULT_ANCHORS))
    results = []

    def worker():
        results.append(cache.get(8, 640, 640, 80, 80))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 1
    assert all(r is results[0] for r in results)
