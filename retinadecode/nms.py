"""
Per-scale confidence filtering and greedy non-maximum suppression.

Responsibility:
    Mark below-threshold candidates, then keep the highest-scoring
    candidates of one scale level while suppressing those that overlap
    an already-kept box.

Non-goals:
    - No cross-level merging (see aggregator.py).
    - No per-class NMS: the detection head is single-class.

Hard-coded:
    - Candidates are never removed. Their fate is recorded in a status
      array index-aligned with boxes, scores and landmarks.
    - Score order is a stable descending sort: equal scores keep their
      original anchor order.
    - Box areas use exclusive edges: (x2 - x1) * (y2 - y1).
"""

from enum import IntEnum
from typing import Optional

import numpy as np


class CandidateStatus(IntEnum):
    """Per-candidate state during filtering and suppression."""

    ACTIVE = 0
    SUPPRESSED = 1
    BELOW_THRESHOLD = 2


def as_scores(scores: np.ndarray) -> np.ndarray:
    """Flatten ``scores``, keeping floating dtypes as they are."""
    scores = np.asarray(scores).reshape(-1)
    if not np.issubdtype(scores.dtype, np.floating):
        scores = scores.astype(np.float64)
    return scores


def score_threshold(threshold: float, scores: np.ndarray) -> np.ndarray:
    """``threshold`` rounded to the precision of ``scores``.

    Thresholds compare in the scores' dtype, not in float64.
    """
    return np.asarray(threshold, dtype=scores.dtype)


def mark_below_threshold(scores: np.ndarray, threshold: float) -> np.ndarray:
    """Return a status array marking every score < ``threshold``.

    A score exactly equal to the threshold, in the scores' own
    precision, stays ACTIVE.
    """
    scores = as_scores(scores)
    status = np.full(scores.shape[0], CandidateStatus.ACTIVE, dtype=np.int8)
    status[scores < score_threshold(threshold, scores)] = CandidateStatus.BELOW_THRESHOLD
    return status


def iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """Intersection-over-union of one (4,) box against (N, 4) boxes."""
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    overlap_w = np.minimum(box[2], boxes[:, 2]) - np.maximum(box[0], boxes[:, 0])
    overlap_h = np.minimum(box[3], boxes[:, 3]) - np.maximum(box[1], boxes[:, 1])
    inter = np.where((overlap_w > 0) & (overlap_h > 0), overlap_w * overlap_h, 0.0)

    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter
    return inter / np.maximum(union, 1e-6)


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    iou_threshold: float,
    confidence_threshold: Optional[float] = None,
    status: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Greedy NMS over the candidates of one scale level.

    Args:
        boxes: Array of shape (N, 4) in (x1, y1, x2, y2).
        scores: Array of shape (N,).
        iou_threshold: Candidates whose IoU with a kept box is >= this
            value are suppressed.
        confidence_threshold: If given, scores below it are marked
            BELOW_THRESHOLD before suppression.
        status: Optional int8 status array (see CandidateStatus). It is
            updated in place; a fresh one is used when omitted.

    Returns:
        Indices of kept candidates, in keep order (descending score).
    """
    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = as_scores(scores)
    if boxes.shape[0] != scores.shape[0]:
        raise ValueError(
            f"boxes and scores must be index-aligned, "
            f"got {boxes.shape[0]} boxes and {scores.shape[0]} scores."
        )

    if status is None:
        status = np.full(scores.shape[0], CandidateStatus.ACTIVE, dtype=np.int8)
    if confidence_threshold is not None:
        below = scores < score_threshold(confidence_threshold, scores)
        status[below] = CandidateStatus.BELOW_THRESHOLD

    if scores.size == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    order = order[status[order] != CandidateStatus.BELOW_THRESHOLD]

    keep = []
    for pos, idx in enumerate(order):
        if status[idx] != CandidateStatus.ACTIVE:
            continue
        keep.append(idx)

        rest = order[pos + 1:]
        rest = rest[status[rest] == CandidateStatus.ACTIVE]
        if rest.size == 0:
            break

        overlaps = iou(boxes[idx], boxes[rest])
        status[rest[overlaps >= iou_threshold]] = CandidateStatus.SUPPRESSED

    return np.array(keep, dtype=np.int64)
