"""
Anchor generation for the detection-head decoder.

Responsibility:
    Build the canonical ("base") anchors of every stride level from
    ratio/scale enumeration, tile them across a spatial grid, and
    memoize the tiled grids per network geometry.

Non-goals:
    - No tensor decoding or score handling.
    - No knowledge of a specific network beyond the StrideConfig list.

Conventions:
    - Anchors use inclusive pixel edges: width = right - left + 1.
    - Enumeration order is significant. Canonical anchors are
      ratio-major / scale-minor; grid anchors are row-major with the
      in-cell anchor index innermost: flat index (ih * W + iw) * A + k.
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from retinadecode.config import StrideConfig
from retinadecode.errors import ShapeMismatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Anchor:
    """Axis-aligned reference rectangle in network-input pixel space.

    Attributes:
        left: Left edge x coordinate.
        top: Top edge y coordinate.
        right: Right edge x coordinate (inclusive).
        bottom: Bottom edge y coordinate (inclusive).
    """

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left + 1.0

    @property
    def height(self) -> float:
        return self.bottom - self.top + 1.0

    @property
    def center_x(self) -> float:
        return self.left + 0.5 * (self.width - 1.0)

    @property
    def center_y(self) -> float:
        return self.top + 0.5 * (self.height - 1.0)

    @classmethod
    def from_center(cls, center_x: float, center_y: float, width: float, height: float) -> "Anchor":
        """Build an anchor of the given size centered on (center_x, center_y)."""
        return cls(
            left=center_x - 0.5 * (width - 1.0),
            top=center_y - 0.5 * (height - 1.0),
            right=center_x + 0.5 * (width - 1.0),
            bottom=center_y + 0.5 * (height - 1.0),
        )

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom


def _round_half_away(value: float) -> float:
    # Python's round() is banker's rounding; anchor sizes round half up.
    return math.copysign(math.floor(abs(value) + 0.5), value)


def _ratio_enum(anchor: Anchor, ratios: Iterable[float]) -> List[Anchor]:
    """Area-preserving aspect-ratio variants of ``anchor``."""
    size = anchor.width * anchor.height
    out = []
    for ratio in ratios:
        ws = _round_half_away(math.sqrt(size / ratio))
        hs = _round_half_away(ws * ratio)
        out.append(Anchor.from_center(anchor.center_x, anchor.center_y, ws, hs))
    return out


def _scale_enum(anchor: Anchor, scales: Iterable[float]) -> List[Anchor]:
    """Scaled variants of ``anchor`` sharing its center."""
    return [
        Anchor.from_center(
            anchor.center_x, anchor.center_y, anchor.width * scale, anchor.height * scale
        )
        for scale in scales
    ]


def generate_anchors(
    base_size: int,
    ratios: Sequence[float],
    scales: Sequence[float],
) -> List[Anchor]:
    """Generate the canonical anchors of one stride level.

    Args:
        base_size: Side of the square base anchor, in pixels.
        ratios: Aspect ratios (height / width).
        scales: Scale multipliers applied to every ratio variant.

    Returns:
        ``len(ratios) * len(scales)`` anchors, ratio-major, scale-minor.
    """
    base = Anchor(0.0, 0.0, base_size - 1.0, base_size - 1.0)
    anchors: List[Anchor] = []
    for ratio_anchor in _ratio_enum(base, ratios):
        anchors.extend(_scale_enum(ratio_anchor, scales))
    return anchors


def generate_anchors_fpn(configs: Iterable[StrideConfig]) -> Dict[int, Tuple[Anchor, ...]]:
    """Generate canonical anchors for every stride, keyed by stride value."""
    anchors_fpn: Dict[int, Tuple[Anchor, ...]] = {}
    for cfg in sorted(configs, key=lambda c: c.stride, reverse=True):
        anchors_fpn[cfg.stride] = tuple(generate_anchors(cfg.base_size, cfg.ratios, cfg.scales))
    return anchors_fpn


def anchors_to_array(anchors: Sequence[Anchor]) -> np.ndarray:
    """Stack anchors into a float64 array of shape (N, 4)."""
    if not anchors:
        return np.zeros((0, 4), dtype=np.float64)
    return np.array([a.as_tuple() for a in anchors], dtype=np.float64)


def expand_anchors(
    canonical: Sequence[Anchor],
    stride: int,
    height: int,
    width: int,
) -> np.ndarray:
    """Tile canonical anchors over a ``height x width`` grid.

    Cell (ih, iw) shifts every canonical anchor by (iw * stride, ih * stride).

    Returns:
        Array of shape (height * width * len(canonical), 4), ordered by
        row, then column, then in-cell anchor index.
    """
    base = anchors_to_array(canonical)
    shift_x = np.arange(width, dtype=np.float64) * stride
    shift_y = np.arange(height, dtype=np.float64) * stride
    sx, sy = np.meshgrid(shift_x, shift_y)  # both (height, width)
    shifts = np.stack([sx, sy, sx, sy], axis=-1).reshape(-1, 1, 4)
    return (base[np.newaxis, :, :] + shifts).reshape(-1, 4)


@dataclass(frozen=True, eq=False)
class AnchorGrid:
    """Full per-position anchor set of one stride for one input resolution.

    Attributes:
        stride: Stride the grid was built for.
        height: Grid rows (output tensor height).
        width: Grid columns (output tensor width).
        anchors_per_cell: Canonical anchors tiled into every cell.
        anchors: Read-only array of shape (height * width * anchors_per_cell, 4).
    """

    stride: int
    height: int
    width: int
    anchors_per_cell: int
    anchors: np.ndarray

    def __len__(self) -> int:
        return self.anchors.shape[0]

    def check_spatial(self, height: int, width: int) -> None:
        """Raise ShapeMismatchError unless the grid is ``height x width``."""
        if (height, width) != (self.height, self.width):
            raise ShapeMismatchError(
                f"Tensor for stride {self.stride} is {height}x{width}, "
                f"but the anchor grid for this input size is "
                f"{self.height}x{self.width}."
            )


class AnchorCache:
    """Memoizes anchor grids keyed by (stride, input_width, input_height).

    Population is idempotent: the grid depends only on static geometry,
    so a redundant recompute produces a value-identical entry.
    """

    def __init__(self, anchors_fpn: Dict[int, Tuple[Anchor, ...]]) -> None:
        self._anchors_fpn = anchors_fpn
        self._grids: Dict[Tuple[int, int, int], AnchorGrid] = {}
        self._lock = threading.Lock()

    def get(
        self,
        stride: int,
        input_width: int,
        input_height: int,
        grid_height: int,
        grid_width: int,
    ) -> AnchorGrid:
        """Return the grid for ``stride`` at this input size, building it once.

        Args:
            stride: Stride level; must be one of the configured strides.
            input_width: Network input width.
            input_height: Network input height.
            grid_height: Spatial height of the stride's output tensor.
            grid_width: Spatial width of the stride's output tensor.

        Raises:
            KeyError: If ``stride`` is not configured.
            ShapeMismatchError: If a cached grid exists for this key but
                its spatial size differs from ``grid_height x grid_width``.
        """
        canonical = self._anchors_fpn[stride]
        key = (stride, input_width, input_height)

        with self._lock:
            grid = self._grids.get(key)
            if grid is None:
                anchors = expand_anchors(canonical, stride, grid_height, grid_width)
                anchors.setflags(write=False)
                grid = AnchorGrid(
                    stride=stride,
                    height=grid_height,
                    width=grid_width,
                    anchors_per_cell=len(canonical),
                    anchors=anchors,
                )
                self._grids[key] = grid
                logger.debug(
                    "Anchor grid built: stride=%d, input=%dx%d, grid=%dx%d, anchors=%d",
                    stride, input_width, input_height, grid_height, grid_width, len(grid),
                )

        grid.check_spatial(grid_height, grid_width)
        return grid

    def clear(self) -> None:
        with self._lock:
            self._grids.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._grids)
