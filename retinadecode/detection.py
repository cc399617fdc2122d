"""
Detection data types.

This module defines the two records that flow through the decoder:

    - Candidates: transient, per-scale-level decode output. Struct of
      arrays, index-aligned with the stride's anchor grid.
    - DetectedObject: the final output unit returned to callers, in
      source-image coordinates.

Non-goals:
    - No rendering logic.
    - No file I/O.
    - No coordinate transformation (that belongs in aggregator.py).
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from retinadecode.nms import CandidateStatus

Point = Tuple[float, float]


@dataclass
class Candidates:
    """Decoded candidates of one scale level.

    Attributes:
        stride: Stride level the candidates were decoded from.
        boxes: (N, 4) boxes in network-input pixels.
        scores: (N,) foreground scores.
        status: (N,) int8 CandidateStatus values.
        landmarks: (N, L, 2) landmark points, or None.
        aux_scores: (N,) auxiliary scores, or None.
    """

    stride: int
    boxes: np.ndarray
    scores: np.ndarray
    status: np.ndarray
    landmarks: Optional[np.ndarray] = None
    aux_scores: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return self.scores.shape[0]

    def select(self, indices: np.ndarray) -> "Candidates":
        """Return the candidates at ``indices``, in that order."""
        return Candidates(
            stride=self.stride,
            boxes=self.boxes[indices],
            scores=self.scores[indices],
            status=self.status[indices],
            landmarks=None if self.landmarks is None else self.landmarks[indices],
            aux_scores=None if self.aux_scores is None else self.aux_scores[indices],
        )

    @property
    def active_count(self) -> int:
        return int(np.count_nonzero(self.status == CandidateStatus.ACTIVE))


@dataclass(frozen=True, slots=True)
class DetectedObject:
    """A single detection in source-image coordinates.

    Attributes:
        x1: Left edge (absolute pixels).
        y1: Top edge (absolute pixels).
        x2: Right edge (absolute pixels).
        y2: Bottom edge (absolute pixels).
        confidence: Detection confidence in [0.0, 1.0].
        label_id: Integer class id.
        label: Class name resolved from the label table.
        landmarks: Landmark (x, y) points, or None when the landmark head
                   is disabled.
        aux_score: Auxiliary classification score (e.g. mask), or None.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    confidence: float
    label_id: int
    label: str
    landmarks: Optional[Tuple[Point, ...]] = None
    aux_score: Optional[float] = None

    def to_dict(self) -> dict:
        """Return a plain dict suitable for JSON serialization."""
        data = {
            "x1": self.x1,
            "y1": self.y1,
            "x2": self.x2,
            "y2": self.y2,
            "confidence": round(self.confidence, 4),
            "label_id": self.label_id,
            "label": self.label,
        }
        if self.landmarks is not None:
            data["landmarks"] = [list(p) for p in self.landmarks]
        if self.aux_score is not None:
            data["aux_score"] = round(self.aux_score, 4)
        return data

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def width(self) -> float:
        """Bounding box width in pixels, x2 - x1.

        Exclusive-edge: one pixel less, before rescaling, than the
        inclusive right - left + 1 width anchors use.
        """
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        """Bounding box height in pixels, y2 - y1 (exclusive-edge, see width)."""
        return self.y2 - self.y1

    @property
    def area(self) -> float:
        return self.width * self.height
