from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple, Union


PathLike = Union[str, Path]


def _parse_names_mapping(text: str) -> Dict[int, str]:
    """
    Parse the `names:` block of a lightweight `metadata.yaml`:

        names:
          0: person
          1: bicycle
    """

    names: Dict[int, str] = {}
    in_names = False
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names or ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        if not left.isdigit():
            continue
        names[int(left)] = right.strip().strip("'").strip('"')
    return names


def load_labels(path: PathLike) -> Tuple[str, ...]:
    """
    Load the label set once at startup; index = class id.

    `.yaml`/`.yml` files use the `names:` mapping (gaps become the numeric id);
    anything else is read as newline-delimited class names (`classes.txt`).
    Trailing blank lines are ignored; `\\r\\n` line endings are accepted.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Label file not found: {p}")
    text = p.read_text(encoding="utf-8")

    if p.suffix.lower() in {".yaml", ".yml"}:
        mapping = _parse_names_mapping(text)
        if not mapping:
            raise ValueError(f"No `names:` entries found in {p}")
        size = max(mapping) + 1
        return tuple(mapping.get(i, str(i)) for i in range(size))

    lines = [line.strip() for line in text.splitlines()]
    while lines and not lines[-1]:
        lines.pop()
    if not lines:
        raise ValueError(f"Label file is empty: {p}")
    return tuple(lines)
