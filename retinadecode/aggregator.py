"""
Cross-level aggregation and rescaling.

Responsibility:
    Merge the kept candidates of every scale level, map boxes and
    landmarks from network-input space back to source-image space, and
    emit DetectedObject records.

Non-goals:
    - No suppression across levels.
    - No clamping to image bounds: boxes may extend past the frame,
      exactly as the network predicted them.

Hard-coded:
    - Independent axis scale factors: input dimension / image dimension.
    - Final confidence check is inclusive (confidence >= threshold) and
      runs in the precision of the score tensor.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from retinadecode.detection import Candidates, DetectedObject
from retinadecode.nms import as_scores, score_threshold

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameContext:
    """Per-call geometry needed to map detections back to the source image.

    Attributes:
        image_width: Source image width in pixels.
        image_height: Source image height in pixels.
        input_width: Network input width in pixels.
        input_height: Network input height in pixels.
    """

    image_width: int
    image_height: int
    input_width: int
    input_height: int

    def __post_init__(self) -> None:
        for name in ("image_width", "image_height", "input_width", "input_height"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"FrameContext.{name} must be positive, got {value}.")

    @property
    def scale_x(self) -> float:
        return self.input_width / self.image_width

    @property
    def scale_y(self) -> float:
        return self.input_height / self.image_height


def aggregate(
    levels: Sequence[Candidates],
    context: FrameContext,
    confidence_threshold: float,
    label_id: int,
    label: str,
) -> List[DetectedObject]:
    """Merge kept candidates of all levels into source-image detections.

    Args:
        levels: Kept candidates per level, in the order they should appear
                in the output.
        context: Image and network-input geometry of this frame.
        confidence_threshold: Detections below this value are dropped.
        label_id: Class id assigned to every detection.
        label: Class name assigned to every detection.

    Returns:
        List of DetectedObject. Empty if nothing survives.
    """
    scale_x = context.scale_x
    scale_y = context.scale_y
    detections: List[DetectedObject] = []

    for level in levels:
        threshold = score_threshold(confidence_threshold, as_scores(level.scores))
        for i in range(len(level)):
            if level.scores[i] < threshold:
                continue
            confidence = float(level.scores[i])

            x1, y1, x2, y2 = level.boxes[i]
            landmarks = None
            if level.landmarks is not None:
                landmarks = tuple(
                    (float(px / scale_x), float(py / scale_y)) for px, py in level.landmarks[i]
                )
            aux_score = None
            if level.aux_scores is not None:
                aux_score = float(level.aux_scores[i])

            detections.append(DetectedObject(
                x1=float(x1 / scale_x),
                y1=float(y1 / scale_y),
                x2=float(x2 / scale_x),
                y2=float(y2 / scale_y),
                confidence=confidence,
                label_id=label_id,
                label=label,
                landmarks=landmarks,
                aux_score=aux_score,
            ))

    logger.debug(
        "Aggregated %d detections from %d levels (scale_x=%.4f, scale_y=%.4f)",
        len(detections), len(levels), scale_x, scale_y,
    )
    return detections
