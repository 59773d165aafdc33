from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Union


def _names_from_json(payload: object, path: Path) -> Dict[int, str]:
    if isinstance(payload, dict) and "names" in payload:
        payload = payload["names"]
    if isinstance(payload, list):
        if not all(isinstance(name, str) for name in payload):
            raise ValueError(f"Class name list must contain strings: {path}")
        return dict(enumerate(payload))
    if isinstance(payload, dict):
        names: Dict[int, str] = {}
        for key, value in payload.items():
            if not str(key).isdigit() or not isinstance(value, str):
                raise ValueError(f"Class names must map integer ids to strings: {path}")
            names[int(key)] = value
        return names
    raise ValueError(f"Unsupported class names JSON: {path}")


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names as {class_id: name}.

    Two formats are understood:

    - JSON: a list (`["person", "bicycle", ...]`, as in `labels.json`), an
      object of id -> name, or either under a top-level "names" key.
    - The lightweight YAML-like `metadata.yaml` mapping:

        names:
          0: person
          1: bicycle

    The YAML variant is parsed line by line rather than through PyYAML.
    """

    path = Path(metadata_path)
    if not path.exists():
        raise FileNotFoundError(f"Class names file not found: {path}")

    if path.suffix.lower() == ".json":
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid class names JSON: {path}") from exc
        return _names_from_json(payload, path)

    names: Dict[int, str] = {}
    in_names = False

    with open(path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names
