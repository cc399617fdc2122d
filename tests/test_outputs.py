"""
Tests for output routing.
"""

import numpy as np
import pytest

from retinadecode.errors import ConfigurationError, ShapeMismatchError
from retinadecode.outputs import HeadType, OutputLayout, classify_output


def _shapes(with_landmarks=True, with_masks=False, extra=None):
    shapes = {}
    for stride, size in ((32, 20), (16, 40), (8, 80)):
        shapes[f"face_rpn_cls_prob_reshape_stride{stride}"] = (1, 4, size, size)
        shapes[f"face_rpn_bbox_pred_stride{stride}"] = (1, 8, size, size)
        if with_landmarks:
            shapes[f"face_rpn_landmark_pred_stride{stride}"] = (1, 20, size, size)
        if with_masks:
            shapes[f"face_rpn_type_prob_reshape_stride{stride}"] = (1, 6, size, size)
    shapes.update(extra or {})
    return shapes


def test_classify_output_names():
    """Head type comes from the output name."""
    assert classify_output("face_rpn_bbox_pred_stride8") is HeadType.BOXES
    assert classify_output("face_rpn_cls_prob_reshape_stride8") is HeadType.SCORES
    assert classify_output("face_rpn_landmark_pred_stride8") is HeadType.LANDMARKS
    assert classify_output("face_rpn_type_prob_reshape_stride8") is None
    assert classify_output("face_rpn_type_prob_reshape_stride8", with_masks=True) is HeadType.AUX_SCORES


def test_nine_outputs_route_by_spatial_size():
    """Smallest feature map goes to the largest stride, regardless of input order."""
    shapes = dict(reversed(list(_shapes().items())))
    layout = OutputLayout.from_shapes(shapes, [8, 32, 16])

    assert layout.strides == (32, 16, 8)
    assert layout.names[32][HeadType.SCORES] == "face_rpn_cls_prob_reshape_stride32"
    assert layout.names[8][HeadType.LANDMARKS] == "face_rpn_landmark_pred_stride8"


def test_twelve_outputs_with_masks():
    """Mask heads are routed only when requested."""
    layout = OutputLayout.from_shapes(_shapes(with_masks=True), [32, 16, 8], with_masks=True)
    assert layout.names[16][HeadType.AUX_SCORES] == "face_rpn_type_prob_reshape_stride16"

    without = OutputLayout.from_shapes(_shapes(with_masks=True), [32, 16, 8])
    assert HeadType.AUX_SCORES not in without.names[16]


def test_unrelated_outputs_are_ignored():
    """Outputs that are not detection heads do not count."""
    layout = OutputLayout.from_shapes(_shapes(extra={"fc1": (1, 128)}), [32, 16, 8])
    assert len(layout.names) == 3


def test_wrong_head_count_is_configuration_error():
    """A stride without a box head is rejected."""
    shapes = _shapes()
    del shapes["face_rpn_bbox_pred_stride16"]
    with pytest.raises(ConfigurationError, match="'bbox'"):
        OutputLayout.from_shapes(shapes, [32, 16, 8])


def test_missing_mask_head_is_configuration_error():
    """Requesting masks on a nine-output model fails."""
    with pytest.raises(ConfigurationError, match="'type'"):
        OutputLayout.from_shapes(_shapes(), [32, 16, 8], with_masks=True)


def test_spatial_disagreement_within_stride():
    """Heads assigned to one stride must share H x W."""
    shapes = _shapes()
    shapes["face_rpn_bbox_pred_stride16"] = (1, 8, 40, 41)
    with pytest.raises(ShapeMismatchError, match="stride 16"):
        OutputLayout.from_shapes(shapes, [32, 16, 8])


def test_non_4d_head_is_rejected():
    """Head tensors must be (1, C, H, W)."""
    shapes = _shapes()
    shapes["face_rpn_cls_prob_reshape_stride8"] = (4, 80, 80)
    with pytest.raises(ShapeMismatchError, match="4-dimensional"):
        OutputLayout.from_shapes(shapes, [32, 16, 8])


def test_select_groups_tensors_by_stride():
    """select() returns the routed tensors per stride."""
    shapes = _shapes(with_landmarks=False)
    outputs = {name: np.zeros(shape, dtype=np.float32) for name, shape in shapes.items()}
    layout = OutputLayout.from_shapes(shapes, [32, 16, 8], with_landmarks=False)

    selected = layout.select(outputs)

    assert selected[8].scores is outputs["face_rpn_cls_prob_reshape_stride8"]
    assert selected[8].landmarks is None

    del outputs["face_rpn_bbox_pred_stride32"]
    with pytest.raises(ConfigurationError, match="missing"):
        layout.select(outputs)
