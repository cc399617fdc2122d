"""
Decoder — the single public API for detection-head post-processing.

This module is the ONLY intended programmatic entry point for consumers
of the library. All other modules are internal building blocks.

Public contract:
    Decoder.decode(outputs: Mapping[str, array], context: FrameContext)
        -> list[DetectedObject]

Constraints:
    - Output tensors are borrowed for the duration of one call and are
      never written.
    - decode() may run concurrently on different frames. The only shared
      state is the instance's anchor-grid cache, which is lock-guarded.

Non-goals:
    - No model execution, device management, or image preprocessing.
    - No rendering or result serialization to files.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from retinadecode.aggregator import FrameContext, aggregate
from retinadecode.anchors import Anchor, AnchorCache, generate_anchors_fpn
from retinadecode.config import AppConfig, get_project_root, load_config, validate_config
from retinadecode.decoders import (
    decode_boxes,
    decode_landmarks,
    extract_aux_scores,
    extract_scores,
)
from retinadecode.detection import Candidates, DetectedObject
from retinadecode.errors import ConfigurationError
from retinadecode.labels import DEFAULT_LABELS, label_name, load_labels
from retinadecode.nms import mark_below_threshold, nms
from retinadecode.outputs import OutputLayout, StrideOutputs, shapes_of
from retinadecode.tensor_view import TensorView

logger = logging.getLogger(__name__)


class Decoder:
    """Post-processor for multi-scale anchor-based detector outputs.

    Usage:
        decoder = Decoder()                                  # RetinaFace defaults
        decoder = Decoder(config=my_config, labels=labels)   # custom
        context = FrameContext(image_width=1280, image_height=720,
                               input_width=640, input_height=640)
        detections = decoder.decode(outputs, context)

    The constructor builds the canonical anchors once. Tiled anchor grids
    are built on the first frame of each input resolution and reused.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        labels: Optional[Sequence[str]] = None,
        output_shapes: Optional[Mapping[str, Sequence[int]]] = None,
    ) -> None:
        """Initialize the decoder.

        Args:
            config: Decoder configuration. If None, defaults are used.
            labels: Label table (index = class id). If None, the table is
                    read from ``config.labels.path`` or the built-in face
                    labels are used.
            output_shapes: Optional output name → shape mapping of the
                    model. When given, outputs are routed now so a model
                    that does not match the configuration fails here. Otherwise
                    each decode() call routes its own outputs.

        Raises:
            ValueError: If configuration values are invalid.
            ConfigurationError: If ``output_shapes`` does not match the
                configured strides and heads, or the label file is empty.
            FileNotFoundError: If the configured label file is missing.
        """
        if config is None:
            config = load_config()
        validate_config(config)

        self._config = config
        self._anchors_fpn = generate_anchors_fpn(config.anchors)
        self._cache = AnchorCache(self._anchors_fpn)
        self._labels = tuple(labels) if labels is not None else self._load_labels(config)
        self._layout: Optional[OutputLayout] = None

        if output_shapes is not None:
            self._layout = self._route(output_shapes)

        logger.info(
            "Decoder initialized (strides=%s, anchors_per_cell=%s, "
            "confidence_threshold=%.2f, nms_threshold=%.2f, landmarks=%s, masks=%s)",
            [a.stride for a in config.anchors],
            [len(self._anchors_fpn[a.stride]) for a in config.anchors],
            config.decoder.confidence_threshold,
            config.decoder.nms_threshold,
            config.decoder.detect_landmarks,
            config.decoder.detect_masks,
        )

    @property
    def config(self) -> AppConfig:
        """Return the active configuration (read-only)."""
        return self._config

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def anchors_fpn(self) -> Dict[int, Tuple[Anchor, ...]]:
        """Canonical anchors per stride."""
        return dict(self._anchors_fpn)

    @property
    def cache(self) -> AnchorCache:
        return self._cache

    def label_name(self, label_id: int) -> str:
        return label_name(self._labels, label_id)

    def decode(self, outputs: Mapping[str, Any], context: FrameContext) -> List[DetectedObject]:
        """Decode one frame's named output tensors.

        Args:
            outputs: Output name → (1, C, H, W) array, as produced by the
                     model-execution collaborator.
            context: Image and network-input geometry of this frame.

        Returns:
            Detections in source-image coordinates. Empty if none survive.

        Raises:
            TypeError: If outputs is not a mapping.
            ConfigurationError: If the outputs do not match the configured
                strides and heads.
            ShapeMismatchError: If a tensor disagrees with its anchor grid.
        """
        if not isinstance(outputs, Mapping):
            raise TypeError(
                f"Expected outputs to be a mapping of output name to tensor, "
                f"got {type(outputs).__name__}."
            )

        layout = self._layout
        if layout is None:
            # Routed per call; pass output_shapes to route once.
            layout = self._route(shapes_of(outputs))

        return self.decode_heads(layout.select(outputs), context)

    def decode_heads(
        self,
        heads: Mapping[int, StrideOutputs],
        context: FrameContext,
    ) -> List[DetectedObject]:
        """Decode tensors already grouped by stride.

        Levels are processed, and their detections emitted, in the order
        of the anchors configuration.

        Raises:
            ConfigurationError: If a configured stride has no outputs, or a
                requested head is missing.
            ShapeMismatchError: If a tensor disagrees with its anchor grid.
        """
        decoder_cfg = self._config.decoder
        levels = []
        for stride_cfg in self._config.anchors:
            stride = stride_cfg.stride
            if stride not in heads:
                raise ConfigurationError(
                    f"No outputs supplied for stride {stride}; "
                    f"got strides {sorted(heads)}."
                )
            levels.append(self._decode_level(stride, heads[stride], context))

        return aggregate(
            levels,
            context,
            confidence_threshold=decoder_cfg.confidence_threshold,
            label_id=decoder_cfg.label_id,
            label=self.label_name(decoder_cfg.label_id),
        )

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _decode_level(self, stride: int, outputs: StrideOutputs, context: FrameContext) -> Candidates:
        """Decode, threshold and suppress the candidates of one stride."""
        cfg = self._config.decoder
        anchor_num = len(self._anchors_fpn[stride])

        boxes_view = TensorView(outputs.boxes, name=f"stride{stride}/bbox")
        scores_view = TensorView(outputs.scores, name=f"stride{stride}/cls")

        grid = self._cache.get(
            stride, context.input_width, context.input_height, boxes_view.height, boxes_view.width
        )
        grid.check_spatial(*scores_view.spatial)

        scores = extract_scores(scores_view, anchor_num, cfg.score_split)
        proposals = decode_boxes(boxes_view, grid.anchors, anchor_num)

        landmarks = None
        if cfg.detect_landmarks:
            if outputs.landmarks is None:
                raise ConfigurationError(
                    f"Landmarks were requested but stride {stride} has no landmark output."
                )
            landmarks_view = TensorView(outputs.landmarks, name=f"stride{stride}/landmark")
            grid.check_spatial(*landmarks_view.spatial)
            landmarks = decode_landmarks(
                landmarks_view, grid.anchors, anchor_num, cfg.landmarks_num, cfg.landmark_std
            )

        aux_scores = None
        if cfg.detect_masks:
            if outputs.aux_scores is None:
                raise ConfigurationError(
                    f"Mask scores were requested but stride {stride} has no auxiliary output."
                )
            aux_view = TensorView(outputs.aux_scores, name=f"stride{stride}/type")
            grid.check_spatial(*aux_view.spatial)
            aux_scores = extract_aux_scores(aux_view, anchor_num)

        status = mark_below_threshold(scores, cfg.confidence_threshold)
        candidates = Candidates(
            stride=stride,
            boxes=proposals,
            scores=scores,
            status=status,
            landmarks=landmarks,
            aux_scores=aux_scores,
        )
        above = candidates.active_count
        keep = nms(proposals, scores, cfg.nms_threshold, status=status)

        logger.debug(
            "Stride %d: %d anchors, %d above threshold, %d kept after NMS",
            stride, len(candidates), above, keep.size,
        )
        return candidates.select(keep)

    def _route(self, shapes: Mapping[str, Sequence[int]]) -> OutputLayout:
        cfg = self._config.decoder
        return OutputLayout.from_shapes(
            shapes,
            [a.stride for a in self._config.anchors],
            with_landmarks=cfg.detect_landmarks,
            with_masks=cfg.detect_masks,
        )

    @staticmethod
    def _load_labels(config: AppConfig) -> Tuple[str, ...]:
        if config.labels.path is None:
            return DEFAULT_LABELS

        path = Path(config.labels.path)
        if not path.is_absolute():
            path = get_project_root() / path
        return load_labels(path)
