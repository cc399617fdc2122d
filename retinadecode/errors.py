"""
Error taxonomy for the detection-head decoder.

All domain errors derive from ValueError so callers that already guard
decode calls with ``except ValueError`` keep working.

    RetinaDecodeError
    ├── ConfigurationError   (fatal at construction / initialization)
    └── ShapeMismatchError   (fatal per decode call)

Empty results are never errors: a level with no surviving candidates,
or a frame with no detections, yields an empty list.
"""


class RetinaDecodeError(ValueError):
    """Base class for all decoder errors."""


class ConfigurationError(RetinaDecodeError):
    """Output tensors or configuration do not describe a usable model.

    Raised when the number of head tensors does not match the configured
    strides and head types (e.g. a landmark head is missing while
    landmarks were requested), or when a label file is empty.
    """


class ShapeMismatchError(RetinaDecodeError):
    """A tensor's shape disagrees with the anchor grid of its stride."""
