"""
retinadecode — post-processing for multi-scale anchor-based detectors.

Public API:
    - Decoder: The single entry point for decoding detector outputs.
    - FrameContext: Per-call image / network-input geometry.
    - DetectedObject: Data transfer object representing one detection.
    - StrideOutputs: Raw tensors of one stride, for callers that group
      outputs themselves.
    - AppConfig, DecoderConfig, StrideConfig, load_config: configuration.
    - ConfigurationError, ShapeMismatchError: decode failures.

Usage:
    from retinadecode import Decoder, FrameContext

    decoder = Decoder()
    detections = decoder.decode(outputs, FrameContext(1280, 720, 640, 640))
"""

from retinadecode.aggregator import FrameContext
from retinadecode.config import AppConfig, DecoderConfig, StrideConfig, load_config
from retinadecode.decoder import Decoder
from retinadecode.detection import DetectedObject
from retinadecode.errors import ConfigurationError, RetinaDecodeError, ShapeMismatchError
from retinadecode.outputs import StrideOutputs

__all__ = [
    "Decoder",
    "FrameContext",
    "DetectedObject",
    "StrideOutputs",
    "AppConfig",
    "DecoderConfig",
    "StrideConfig",
    "load_config",
    "ConfigurationError",
    "RetinaDecodeError",
    "ShapeMismatchError",
]
