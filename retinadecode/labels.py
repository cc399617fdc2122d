"""
Label table loading.

Responsibility:
    Read a plain-text label file (one label per line, line index = class
    id) and resolve class ids to display names.

Failure behavior:
    - Missing label file raises FileNotFoundError with the resolved path.
    - A label file with no lines raises ConfigurationError.
"""

import logging
from pathlib import Path
from typing import Sequence, Tuple, Union

from retinadecode.errors import ConfigurationError

logger = logging.getLogger(__name__)

# RetinaFace is single-class; id 1 is the face class.
DEFAULT_LABELS: Tuple[str, ...] = ("background", "face")


def load_labels(path: Union[str, Path]) -> Tuple[str, ...]:
    """Load a label table from ``path``.

    Returns:
        Tuple of labels, index = class id. Blank lines are kept so ids
        stay aligned with line numbers.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is empty.
    """
    resolved = Path(path)
    if not resolved.is_file():
        raise FileNotFoundError(
            f"Label file not found.\n"
            f"  Expected: {resolved}\n"
            f"  Provide the file or update 'labels.path' in your config."
        )

    with open(resolved, "r", encoding="utf-8") as f:
        labels = tuple(line.rstrip("\r\n") for line in f)

    if not labels:
        raise ConfigurationError(f"Label file is empty: {resolved}")

    logger.info("Loaded %d labels from: %s", len(labels), resolved)
    return labels


def label_name(labels: Sequence[str], label_id: int) -> str:
    """Resolve ``label_id`` to a name, falling back to ``"Label #N"``."""
    if 0 <= label_id < len(labels):
        return labels[label_id]
    return f"Label #{label_id}"
