"""
Tests for the labels module.
"""

import pytest

from retinadecode.errors import ConfigurationError
from retinadecode.labels import DEFAULT_LABELS, label_name, load_labels


def test_load_labels_one_per_line(tmp_path):
    """Line index is the class id."""
    path = tmp_path / "labels.txt"
    path.write_text("background\nface\nmask\n", encoding="utf-8")

    labels = load_labels(path)

    assert labels == ("background", "face", "mask")
    assert label_name(labels, 2) == "mask"


def test_load_labels_empty_file(tmp_path):
    """An empty label file is a configuration error."""
    path = tmp_path / "labels.txt"
    path.write_text("", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="empty"):
        load_labels(path)


def test_load_labels_missing_file(tmp_path):
    """A missing label file names the expected path."""
    with pytest.raises(FileNotFoundError, match="labels.txt"):
        load_labels(tmp_path / "labels.txt")


def test_label_name_fallback():
    """Out-of-range ids get a generated placeholder."""
    assert label_name(DEFAULT_LABELS, 1) == "face"
    assert label_name(DEFAULT_LABELS, 7) == "Label #7"
    assert label_name((), 0) == "Label #0"
