"""
Routing of named model outputs to detection heads.

Responsibility:
    Classify the detector's named output tensors into head types
    (boxes, scores, landmarks, auxiliary scores) and assign each to its
    stride level, failing fast when the set of outputs does not match
    the configured architecture.

Hard-coded:
    - Head type is recognized by substring of the output name:
      "bbox", "cls", "landmark", and "type" (auxiliary scores, only
      when requested). Other outputs are ignored.
    - Within a head type, tensors are ordered by ascending spatial
      height and matched to strides in descending order: the coarsest
      stride owns the smallest feature map.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from retinadecode.errors import ConfigurationError, ShapeMismatchError

logger = logging.getLogger(__name__)


class HeadType(Enum):
    """Detection head kinds, valued by the name fragment that marks them."""

    BOXES = "bbox"
    SCORES = "cls"
    LANDMARKS = "landmark"
    AUX_SCORES = "type"


@dataclass(frozen=True)
class StrideOutputs:
    """Raw output tensors of one stride level, each shaped (1, C, H, W)."""

    scores: Any
    boxes: Any
    landmarks: Optional[Any] = None
    aux_scores: Optional[Any] = None


def classify_output(name: str, with_masks: bool = False) -> Optional[HeadType]:
    """Return the head type encoded in an output name, or None."""
    if HeadType.BOXES.value in name:
        return HeadType.BOXES
    if HeadType.SCORES.value in name:
        return HeadType.SCORES
    if HeadType.LANDMARKS.value in name:
        return HeadType.LANDMARKS
    if with_masks and HeadType.AUX_SCORES.value in name:
        return HeadType.AUX_SCORES
    return None


def required_heads(with_landmarks: bool, with_masks: bool) -> List[HeadType]:
    heads = [HeadType.SCORES, HeadType.BOXES]
    if with_landmarks:
        heads.append(HeadType.LANDMARKS)
    if with_masks:
        heads.append(HeadType.AUX_SCORES)
    return heads


def shapes_of(outputs: Mapping[str, Any]) -> Dict[str, Tuple[int, ...]]:
    """Map every output name to its array shape."""
    return {name: tuple(np.shape(tensor)) for name, tensor in outputs.items()}


@dataclass(frozen=True)
class OutputLayout:
    """Assignment of output names to (stride, head type).

    Attributes:
        strides: Configured strides, descending.
        names: stride → head type → output name.
    """

    strides: Tuple[int, ...]
    names: Dict[int, Dict[HeadType, str]]

    @classmethod
    def from_shapes(
        cls,
        shapes: Mapping[str, Sequence[int]],
        strides: Iterable[int],
        with_landmarks: bool = True,
        with_masks: bool = False,
    ) -> "OutputLayout":
        """Route output shapes to strides and head types.

        Args:
            shapes: Output name → (1, C, H, W) shape.
            strides: Configured stride values.
            with_landmarks: Require one landmark head per stride.
            with_masks: Require one auxiliary score head per stride.

        Raises:
            ConfigurationError: If a requested head type does not provide
                exactly one tensor per stride.
            ShapeMismatchError: If an output is not 4-dimensional, or the
                heads of one stride disagree on spatial size.
        """
        ordered = tuple(sorted(strides, reverse=True))
        heads = required_heads(with_landmarks, with_masks)
        grouped: Dict[HeadType, List[Tuple[int, str]]] = {head: [] for head in heads}

        for name, shape in shapes.items():
            head = classify_output(name, with_masks)
            if head not in grouped:
                continue
            if len(shape) != 4:
                raise ShapeMismatchError(
                    f"Output '{name}' must be 4-dimensional (1, C, H, W), got shape {tuple(shape)}."
                )
            grouped[head].append((int(shape[2]), name))

        for head in heads:
            found = grouped[head]
            if len(found) != len(ordered):
                raise ConfigurationError(
                    f"Expected {len(ordered)} '{head.value}' outputs (one per stride "
                    f"{list(ordered)}), got {len(found)}: {[n for _, n in found]}. "
                    f"Check the model outputs against the anchors configuration."
                )
            found.sort(key=lambda item: item[0])

        names: Dict[int, Dict[HeadType, str]] = {stride: {} for stride in ordered}
        for head in heads:
            for stride, (_, name) in zip(ordered, grouped[head]):
                names[stride][head] = name

        for stride, by_head in names.items():
            spatial = {name: tuple(shapes[name][2:4]) for name in by_head.values()}
            if len(set(spatial.values())) > 1:
                raise ShapeMismatchError(
                    f"Heads of stride {stride} disagree on spatial size: {spatial}."
                )

        logger.info(
            "Routed %d outputs to strides %s (heads: %s)",
            sum(len(h) for h in names.values()), list(ordered), [h.value for h in heads],
        )
        return cls(strides=ordered, names=names)

    def select(self, outputs: Mapping[str, Any]) -> Dict[int, StrideOutputs]:
        """Pick this layout's tensors out of ``outputs``, grouped by stride.

        Raises:
            ConfigurationError: If a routed output name is missing.
        """
        selected: Dict[int, StrideOutputs] = {}
        for stride, by_head in self.names.items():
            missing = [name for name in by_head.values() if name not in outputs]
            if missing:
                raise ConfigurationError(
                    f"Outputs {missing} for stride {stride} are missing from this "
                    f"inference result."
                )
            landmarks = by_head.get(HeadType.LANDMARKS)
            aux = by_head.get(HeadType.AUX_SCORES)
            selected[stride] = StrideOutputs(
                scores=outputs[by_head[HeadType.SCORES]],
                boxes=outputs[by_head[HeadType.BOXES]],
                landmarks=None if landmarks is None else outputs[landmarks],
                aux_scores=None if aux is None else outputs[aux],
            )
        return selected
