"""
Run artifacts written under `--out-dir`: the resolved run config and the
end-of-run summary.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


def today_date_str(now: Optional[datetime] = None) -> str:
    dt = now or datetime.now()
    return dt.strftime("%Y-%m-%d")


def _sha256_path(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def file_metadata(path: Path) -> Dict[str, object]:
    payload: Dict[str, object] = {"path": str(path)}
    if not path.exists():
        payload["exists"] = False
        return payload
    st = path.stat()
    payload.update(
        {
            "exists": True,
            "size_bytes": int(st.st_size),
            "mtime": float(st.st_mtime),
            "sha256": _sha256_path(path),
        }
    )
    return payload


def _report_dir(out_dir: Path, date: str) -> Path:
    report_dir = out_dir / "reports" / date
    report_dir.mkdir(parents=True, exist_ok=True)
    return report_dir


def write_run_config(*, out_dir: Path, date: str, run_config: Dict[str, Any]) -> Path:
    path = _report_dir(out_dir, date) / "run_config.json"
    path.write_text(json.dumps(run_config, indent=2, sort_keys=True), encoding="utf-8")
    return path


def write_run_summary(*, out_dir: Path, date: str, summary: Dict[str, Any]) -> Path:
    path = _report_dir(out_dir, date) / "run_summary.json"
    path.write_text(json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8")
    return path
