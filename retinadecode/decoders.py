"""
Tensor decoders for the detection head.

Responsibility:
    Turn per-stride output tensors into per-anchor boxes, foreground
    scores, landmark points and auxiliary scores, index-aligned with
    the stride's anchor grid.

Non-goals:
    - No thresholding or suppression (see nms.py).
    - No rescaling to source-image coordinates (see aggregator.py).

Hard-coded:
    - Channel layout: ``anchor_num`` consecutive channel groups of
      ``C // anchor_num`` channels; anchor i reads group ``i % anchor_num``
      at grid position ``i // anchor_num``.
    - Box regression: center offset scaled by anchor size, natural
      exponential on the size deltas.
    - Score tensors carry ``anchor_num`` background channels before the
      foreground block; auxiliary (mask) score tensors carry
      ``2 * anchor_num`` channels before theirs.
"""

from typing import Optional, Tuple

import numpy as np

from retinadecode.errors import ShapeMismatchError
from retinadecode.nms import as_scores
from retinadecode.tensor_view import TensorView

LANDMARKS_NUM = 5
LANDMARK_STD = 0.2


def _check_anchors(view: TensorView, anchors: np.ndarray, anchor_num: int) -> np.ndarray:
    anchors = np.asarray(anchors, dtype=np.float64).reshape(-1, 4)
    expected = view.positions * anchor_num
    if anchors.shape[0] != expected:
        raise ShapeMismatchError(
            f"Tensor{view.label} has "
            f"{view.height}x{view.width} positions x {anchor_num} anchors = {expected} "
            f"entries, but {anchors.shape[0]} anchors were supplied."
        )
    return anchors


def _anchor_geometry(anchors: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Widths, heights and centers of (N, 4) inclusive-edge anchors."""
    widths = anchors[:, 2] - anchors[:, 0] + 1.0
    heights = anchors[:, 3] - anchors[:, 1] + 1.0
    ctr_x = anchors[:, 0] + 0.5 * (widths - 1.0)
    ctr_y = anchors[:, 1] + 0.5 * (heights - 1.0)
    return widths, heights, ctr_x, ctr_y


def decode_boxes(view: TensorView, anchors: np.ndarray, anchor_num: int) -> np.ndarray:
    """Apply (dx, dy, dw, dh) regression deltas to every anchor.

    Args:
        view: Box regression tensor, at least 4 channels per anchor.
        anchors: Anchor grid of shape (H * W * anchor_num, 4).
        anchor_num: Anchors per grid cell.

    Returns:
        Array of shape (N, 4) with decoded (x1, y1, x2, y2) boxes in
        network-input pixels.

    Raises:
        ShapeMismatchError: If the tensor and the anchor grid disagree.
    """
    anchors = _check_anchors(view, anchors, anchor_num)
    deltas = view.anchor_groups(anchor_num, 4).astype(np.float64)
    widths, heights, ctr_x, ctr_y = _anchor_geometry(anchors)

    pred_ctr_x = deltas[:, 0] * widths + ctr_x
    pred_ctr_y = deltas[:, 1] * heights + ctr_y
    pred_w = np.exp(deltas[:, 2]) * widths
    pred_h = np.exp(deltas[:, 3]) * heights

    return np.stack(
        [
            pred_ctr_x - 0.5 * (pred_w - 1.0),
            pred_ctr_y - 0.5 * (pred_h - 1.0),
            pred_ctr_x + 0.5 * (pred_w - 1.0),
            pred_ctr_y + 0.5 * (pred_h - 1.0),
        ],
        axis=1,
    )


def _extract_block_scores(view: TensorView, anchor_num: int, start: int) -> np.ndarray:
    scores = as_scores(view.per_position(start))
    expected = view.positions * anchor_num
    if scores.shape[0] != expected:
        raise ShapeMismatchError(
            f"Score tensor{view.label} has "
            f"{view.channels - start} channels after offset {start}, "
            f"expected {anchor_num} (one per anchor)."
        )
    return scores


def extract_scores(view: TensorView, anchor_num: int, split: Optional[int] = None) -> np.ndarray:
    """Foreground score of every anchor, in grid enumeration order.

    Args:
        view: Classification tensor: background channels, then foreground.
        anchor_num: Anchors per grid cell.
        split: First foreground channel. Defaults to ``anchor_num``.

    Returns:
        Array of shape (H * W * anchor_num,) in the tensor's floating
        dtype. Thresholds are compared at that precision.
    """
    start = anchor_num if split is None else split
    return _extract_block_scores(view, anchor_num, start)


def extract_aux_scores(view: TensorView, anchor_num: int) -> np.ndarray:
    """Auxiliary (e.g. mask) score of every anchor, in grid enumeration order."""
    return _extract_block_scores(view, anchor_num, 2 * anchor_num)


def decode_landmarks(
    view: TensorView,
    anchors: np.ndarray,
    anchor_num: int,
    landmarks_num: int = LANDMARKS_NUM,
    landmark_std: float = LANDMARK_STD,
) -> np.ndarray:
    """Decode landmark points for every anchor.

    Point j of anchor i reads its x offset from channel
    ``(i % anchor_num) * pred_len + 2 * j`` and its y offset from the
    next channel. With two anchors per cell, even anchors read the first
    half of the channel block and odd anchors the second half.

    Returns:
        Array of shape (N, landmarks_num, 2) of (x, y) points in
        network-input pixels.
    """
    anchors = _check_anchors(view, anchors, anchor_num)
    offsets = view.anchor_groups(anchor_num, 2 * landmarks_num).astype(np.float64)
    offsets = offsets.reshape(-1, landmarks_num, 2) * landmark_std
    widths, heights, ctr_x, ctr_y = _anchor_geometry(anchors)

    points = np.empty_like(offsets)
    points[:, :, 0] = offsets[:, :, 0] * widths[:, np.newaxis] + ctr_x[:, np.newaxis]
    points[:, :, 1] = offsets[:, :, 1] * heights[:, np.newaxis] + ctr_y[:, np.newaxis]
    return points
