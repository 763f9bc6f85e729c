from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DetectorProfile:
    schema_version: int
    score_threshold: float
    iou_threshold: float
    max_boxes: int
    num_candidates: int
    image_width: int
    image_height: int
    workgroup_size: Optional[int] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("detector profile schema_version must be 1")
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError("score_threshold must be in [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.max_boxes <= 0:
            raise ValueError("max_boxes must be > 0")
        if self.num_candidates <= 0:
            raise ValueError("num_candidates must be > 0")
        if self.image_width < 32 or self.image_height < 32:
            raise ValueError("image_width and image_height must be >= 32")
        if self.workgroup_size is not None and self.workgroup_size <= 0:
            raise ValueError("workgroup_size must be > 0")


def _require_number(payload: Dict[str, Any], key: str) -> float:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def load_detector_profile(path: Path) -> DetectorProfile:
    if not path.exists():
        raise FileNotFoundError(f"Detector profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector profile must be a JSON object")

    allowed = {
        "schema_version",
        "score_threshold",
        "iou_threshold",
        "max_boxes",
        "num_candidates",
        "image_width",
        "image_height",
        "workgroup_size",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector profile keys: {unknown}")

    workgroup_size = payload.get("workgroup_size")
    if workgroup_size is not None:
        workgroup_size = _require_int(payload, "workgroup_size")
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    return DetectorProfile(
        schema_version=_require_int(payload, "schema_version"),
        score_threshold=_require_number(payload, "score_threshold"),
        iou_threshold=_require_number(payload, "iou_threshold"),
        max_boxes=_require_int(payload, "max_boxes"),
        num_candidates=_require_int(payload, "num_candidates"),
        image_width=_require_int(payload, "image_width"),
        image_height=_require_int(payload, "image_height"),
        workgroup_size=workgroup_size,
        notes=notes,
    )
