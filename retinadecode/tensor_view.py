"""
Bounds-checked view over a raw detector output tensor.

Responsibility:
    Wrap a borrowed (1, C, H, W) channel-major buffer and expose it via
    named (channel, row, col) addressing, channel blocks, and
    per-position reshapes. Decoders never do manual offset arithmetic.

Non-goals:
    - No ownership: the wrapped buffer is never copied or written.
    - No batch support: exactly one image per tensor.
"""

from typing import Optional, Tuple

import numpy as np

from retinadecode.errors import ShapeMismatchError


class TensorView:
    """Read-only (channel, row, col) accessor over a (1, C, H, W) tensor.

    Usage:
        view = TensorView(raw, name="face_rpn_cls_prob_reshape_stride32")
        view.at(channel=3, row=0, col=1)
        view.per_position(start=2)          # (H * W, C - 2)
    """

    def __init__(self, data, name: Optional[str] = None) -> None:
        """Wrap ``data``.

        Raises:
            ShapeMismatchError: If ``data`` is not 4-dimensional with batch 1.
        """
        arr = np.asarray(data)
        label = f" '{name}'" if name else ""

        if arr.ndim != 4:
            raise ShapeMismatchError(
                f"Output tensor{label} must be 4-dimensional (1, C, H, W), "
                f"got shape {arr.shape}."
            )
        if arr.shape[0] != 1:
            raise ShapeMismatchError(
                f"Output tensor{label} must have batch size 1, got shape {arr.shape}. "
                f"Decode one image at a time."
            )

        self._data = arr[0]
        self._name = name
        self._label = label

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def label(self) -> str:
        """Name formatted for error messages (empty when unnamed)."""
        return self._label

    @property
    def channels(self) -> int:
        return self._data.shape[0]

    @property
    def height(self) -> int:
        return self._data.shape[1]

    @property
    def width(self) -> int:
        return self._data.shape[2]

    @property
    def spatial(self) -> Tuple[int, int]:
        """(height, width) of every channel plane."""
        return self.height, self.width

    @property
    def positions(self) -> int:
        return self.height * self.width

    def at(self, channel: int, row: int, col: int) -> float:
        """Read a single element, rejecting out-of-range indices."""
        for axis, index, size in (
            ("channel", channel, self.channels),
            ("row", row, self.height),
            ("col", col, self.width),
        ):
            if not 0 <= index < size:
                raise IndexError(f"{axis} index {index} out of range [0, {size}).")
        return float(self._data[channel, row, col])

    def channel_block(self, start: int, stop: Optional[int] = None) -> np.ndarray:
        """Return channels ``[start, stop)`` as a (stop - start, H, W) view."""
        if stop is None:
            stop = self.channels
        if not 0 <= start <= stop <= self.channels:
            raise ShapeMismatchError(
                f"Channel range [{start}, {stop}) is outside tensor{self._label} "
                f"with {self.channels} channels."
            )
        return self._data[start:stop]

    def per_position(self, start: int = 0, stop: Optional[int] = None) -> np.ndarray:
        """Channels ``[start, stop)`` reshaped to (H * W, stop - start).

        Row p holds the values at grid position p = row * W + col, with
        channels in ascending order.
        """
        block = self.channel_block(start, stop)
        return block.transpose(1, 2, 0).reshape(self.positions, block.shape[0])

    def anchor_groups(self, anchor_num: int, group_len: int) -> np.ndarray:
        """Regression channels regrouped per anchor.

        The tensor stores ``anchor_num`` consecutive channel groups of
        ``C // anchor_num`` channels each; the first ``group_len`` channels
        of every group are returned as an array of shape
        (H * W * anchor_num, group_len) in grid enumeration order
        (row, col, in-cell anchor index).

        Raises:
            ShapeMismatchError: If C is not a multiple of ``anchor_num`` or a
                group is shorter than ``group_len``.
        """
        if anchor_num <= 0 or self.channels % anchor_num != 0:
            raise ShapeMismatchError(
                f"Tensor{self._label} has "
                f"{self.channels} channels, not a multiple of {anchor_num} anchors."
            )
        pred_len = self.channels // anchor_num
        if pred_len < group_len:
            raise ShapeMismatchError(
                f"Tensor{self._label} carries "
                f"{pred_len} channels per anchor, need at least {group_len}."
            )
        grouped = self._data.reshape(anchor_num, pred_len, self.height, self.width)
        grouped = grouped[:, :group_len]
        return grouped.transpose(2, 3, 0, 1).reshape(-1, group_len)
