from __future__ import annotations

from typing import Dict, Mapping, Optional


# Single-class deployment.
CLASS_NAMES: Dict[int, str] = {0: "target-object"}


def class_name_for(class_id: int, class_names: Optional[Mapping[int, str]] = None) -> str:
    names = CLASS_NAMES if class_names is None else class_names
    return names.get(class_id, str(class_id))


def load_class_names(metadata_path: str) -> Dict[int, str]:
    """
    Load class names from a lightweight metadata file:

        names:
          0: target-object
          1: something-else

    Only the ``names:`` block is read; everything else is ignored.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue
            # A new top-level key ends the block.
            if not raw[:1].isspace() and not line[:1].isdigit():
                break
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names
