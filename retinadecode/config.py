"""
Configuration management for the detection-head decoder.

Provides a layered configuration system with the following precedence
(highest to lowest):

    Environment variables > YAML config file > Defaults

Design constraints:
    - The decoder MUST run with zero configuration (RetinaFace defaults).
    - Missing or invalid values fail early and loudly.
    - No decoding logic or tensor handling belongs here.

Non-goals:
    - No dynamic reloading.
    - No model-file or device configuration (owned by the caller).
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Project root resolution
# ---------------------------------------------------------------------------
# Resolved relative to this file's location: retinadecode/config.py → project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def get_project_root() -> Path:
    """Return the resolved project root directory."""
    return _PROJECT_ROOT


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StrideConfig:
    """Anchor configuration of one detection scale level.

    Attributes:
        stride: Grid cell size in network-input pixels.
        base_size: Side of the square base anchor.
        ratios: Aspect ratios (height / width) to enumerate.
        scales: Scale multipliers applied to every ratio variant.
    """

    stride: int
    base_size: int = 16
    ratios: Tuple[float, ...] = (1.0,)
    scales: Tuple[float, ...] = (1.0,)

    @property
    def anchors_per_cell(self) -> int:
        return len(self.ratios) * len(self.scales)


# RetinaFace reference pyramid, in head order (coarsest first).
DEFAULT_ANCHORS: Tuple[StrideConfig, ...] = (
    StrideConfig(stride=32, base_size=16, ratios=(1.0,), scales=(32.0, 16.0)),
    StrideConfig(stride=16, base_size=16, ratios=(1.0,), scales=(8.0, 4.0)),
    StrideConfig(stride=8, base_size=16, ratios=(1.0,), scales=(2.0, 1.0)),
)


@dataclass(frozen=True)
class DecoderConfig:
    """Decoding thresholds and head options.

    Attributes:
        confidence_threshold: Minimum foreground score to keep a candidate.
        nms_threshold: IoU at or above which a candidate is suppressed.
        landmark_std: Multiplier applied to raw landmark offsets.
        landmarks_num: Landmark points per anchor.
        detect_landmarks: Decode the landmark head.
        detect_masks: Decode the auxiliary (mask) score head.
        label_id: Class id assigned to every detection.
        score_split: First foreground channel of the score tensor. None
                     means "after one background channel per anchor".
    """

    confidence_threshold: float = 0.5
    nms_threshold: float = 0.5
    landmark_std: float = 0.2
    landmarks_num: int = 5
    detect_landmarks: bool = True
    detect_masks: bool = False
    label_id: int = 1
    score_split: Optional[int] = None


@dataclass(frozen=True)
class LabelsConfig:
    """Label table configuration.

    Attributes:
        path: Path to a label file (one label per line). None uses the
              built-in face label table.
    """

    path: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    """Top-level configuration.

    Aggregates all sub-configurations into a single, frozen object.
    """

    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    anchors: Tuple[StrideConfig, ...] = DEFAULT_ANCHORS
    labels: LabelsConfig = field(default_factory=LabelsConfig)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_config(config: AppConfig) -> None:
    """Validate configuration values. Raises ValueError on invalid state."""

    decoder = config.decoder

    if not (0.0 <= decoder.confidence_threshold <= 1.0):
        raise ValueError(
            f"decoder.confidence_threshold must be in [0.0, 1.0], "
            f"got {decoder.confidence_threshold}."
        )

    if not (0.0 <= decoder.nms_threshold <= 1.0):
        raise ValueError(
            f"decoder.nms_threshold must be in [0.0, 1.0], "
            f"got {decoder.nms_threshold}."
        )

    if decoder.landmark_std <= 0:
        raise ValueError(
            f"decoder.landmark_std must be positive, got {decoder.landmark_std}."
        )

    if decoder.landmarks_num < 1:
        raise ValueError(
            f"decoder.landmarks_num must be at least 1, got {decoder.landmarks_num}."
        )

    if decoder.label_id < 0:
        raise ValueError(
            f"decoder.label_id must be non-negative, got {decoder.label_id}."
        )

    if decoder.score_split is not None and decoder.score_split < 0:
        raise ValueError(
            f"decoder.score_split must be non-negative or None, "
            f"got {decoder.score_split}."
        )

    if not config.anchors:
        raise ValueError("anchors must list at least one stride level.")

    strides = [a.stride for a in config.anchors]
    if len(set(strides)) != len(strides):
        raise ValueError(f"anchors strides must be unique, got {strides}.")

    for anchor in config.anchors:
        if anchor.stride <= 0:
            raise ValueError(f"anchors stride must be positive, got {anchor.stride}.")
        if anchor.base_size <= 0:
            raise ValueError(
                f"anchors base_size must be positive, got {anchor.base_size} "
                f"(stride {anchor.stride})."
            )
        if not anchor.ratios or any(r <= 0 for r in anchor.ratios):
            raise ValueError(
                f"anchors ratios must be a non-empty list of positive values, "
                f"got {anchor.ratios} (stride {anchor.stride})."
            )
        if not anchor.scales or any(s <= 0 for s in anchor.scales):
            raise ValueError(
                f"anchors scales must be a non-empty list of positive values, "
                f"got {anchor.scales} (stride {anchor.stride})."
            )


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------

def _parse_bool(value) -> bool:
    """Accept YAML booleans and the usual string spellings from env vars."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Expected a boolean value, got {value!r}.")


def _parse_floats(value, name: str) -> Tuple[float, ...]:
    """Convert a YAML scalar or list into a tuple of floats."""
    if isinstance(value, (list, tuple)):
        return tuple(float(v) for v in value)
    if isinstance(value, (int, float)):
        return (float(value),)
    raise ValueError(f"{name} must be a number or a list of numbers, got {value!r}.")


def _build_decoder_config(raw: dict) -> DecoderConfig:
    """Build DecoderConfig from a raw YAML dict."""
    kwargs = {}
    if "confidence_threshold" in raw:
        kwargs["confidence_threshold"] = float(raw["confidence_threshold"])
    if "nms_threshold" in raw:
        kwargs["nms_threshold"] = float(raw["nms_threshold"])
    if "landmark_std" in raw:
        kwargs["landmark_std"] = float(raw["landmark_std"])
    if "landmarks_num" in raw:
        kwargs["landmarks_num"] = int(raw["landmarks_num"])
    if "detect_landmarks" in raw:
        kwargs["detect_landmarks"] = _parse_bool(raw["detect_landmarks"])
    if "detect_masks" in raw:
        kwargs["detect_masks"] = _parse_bool(raw["detect_masks"])
    if "label_id" in raw:
        kwargs["label_id"] = int(raw["label_id"])
    if "score_split" in raw:
        val = raw["score_split"]
        kwargs["score_split"] = int(val) if val is not None else None
    return DecoderConfig(**kwargs)


def _build_anchor_configs(raw) -> Tuple[StrideConfig, ...]:
    """Build the StrideConfig tuple from a raw YAML list."""
    if raw is None:
        return DEFAULT_ANCHORS
    if not isinstance(raw, list):
        raise ValueError(f"anchors must be a list of stride mappings, got {raw!r}.")

    configs = []
    for entry in raw:
        if not isinstance(entry, dict) or "stride" not in entry:
            raise ValueError(f"Each anchors entry needs at least a 'stride' key, got {entry!r}.")
        kwargs = {"stride": int(entry["stride"])}
        if "base_size" in entry:
            kwargs["base_size"] = int(entry["base_size"])
        if "ratios" in entry:
            kwargs["ratios"] = _parse_floats(entry["ratios"], "anchors.ratios")
        if "scales" in entry:
            kwargs["scales"] = _parse_floats(entry["scales"], "anchors.scales")
        configs.append(StrideConfig(**kwargs))
    return tuple(configs)


def _build_labels_config(raw: dict) -> LabelsConfig:
    """Build LabelsConfig from a raw YAML dict."""
    kwargs = {}
    if "path" in raw:
        val = raw["path"]
        kwargs["path"] = str(val) if val is not None else None
    return LabelsConfig(**kwargs)


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------

_ENV_PREFIX = "RETINADECODE_"


def _apply_env_overrides(raw: dict) -> dict:
    """Apply environment variable overrides to the raw config dict.

    Environment variables follow the pattern:
        RETINADECODE_DECODER_CONFIDENCE_THRESHOLD=0.7
        RETINADECODE_LABELS_PATH=labels.txt

    Anchor levels are structured data and can only be set from YAML.
    """
    env_map = {
        f"{_ENV_PREFIX}DECODER_CONFIDENCE_THRESHOLD": ("decoder", "confidence_threshold"),
        f"{_ENV_PREFIX}DECODER_NMS_THRESHOLD": ("decoder", "nms_threshold"),
        f"{_ENV_PREFIX}DECODER_LANDMARK_STD": ("decoder", "landmark_std"),
        f"{_ENV_PREFIX}DECODER_LANDMARKS_NUM": ("decoder", "landmarks_num"),
        f"{_ENV_PREFIX}DECODER_DETECT_LANDMARKS": ("decoder", "detect_landmarks"),
        f"{_ENV_PREFIX}DECODER_DETECT_MASKS": ("decoder", "detect_masks"),
        f"{_ENV_PREFIX}DECODER_LABEL_ID": ("decoder", "label_id"),
        f"{_ENV_PREFIX}LABELS_PATH": ("labels", "path"),
    }

    for env_var, (section, key) in env_map.items():
        value = os.environ.get(env_var)
        if value is not None:
            section_raw = raw.get(section)
            if not isinstance(section_raw, dict):
                section_raw = {}
                raw[section] = section_raw
            section_raw[key] = value
            logger.debug("Config override from env: %s=%s", env_var, value)

    return raw


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate decoder configuration.

    Precedence (highest → lowest):
        Environment variables > YAML file > Hard-coded defaults

    Args:
        config_path: Path to a YAML configuration file. If None,
                     the decoder runs entirely on defaults.

    Returns:
        A validated, frozen AppConfig instance.

    Raises:
        FileNotFoundError: If config_path is provided but does not exist.
        ValueError: If any configuration value is invalid.
        yaml.YAMLError: If the YAML file is malformed.
    """
    raw: dict = {}

    # --- Layer 1: YAML file ---
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.is_absolute():
            resolved = _PROJECT_ROOT / resolved

        if not resolved.is_file():
            raise FileNotFoundError(
                f"Configuration file not found: {resolved}. "
                f"Provide a valid path or omit to use defaults."
            )

        logger.info("Loading config from: %s", resolved)
        with open(resolved, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    # --- Layer 2: Environment variable overrides ---
    raw = _apply_env_overrides(raw)

    # --- Build typed configs ---
    config = AppConfig(
        decoder=_build_decoder_config(raw.get("decoder") or {}),
        anchors=_build_anchor_configs(raw.get("anchors")),
        labels=_build_labels_config(raw.get("labels") or {}),
    )

    # --- Validate ---
    validate_config(config)

    logger.debug("Configuration loaded: %s", config)
    return config
