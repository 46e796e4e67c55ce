"""
Card-face template lookup.

A template is an uploaded image plus a 3x3 grid that cuts it into the 9
card faces. Uploading and slicing images happen elsewhere; the game core
only needs to know that a template exists and what its grid is.

On-disk layout per template:
    <base_dir>/<id>/meta.json    {"id", "name", "createdAt", "updatedAt"}
    <base_dir>/<id>/grid.json    {"x": [4 cuts], "y": [4 cuts]}, normalized 0..1
    <base_dir>/<id>/source.png
    <base_dir>/<id>/slices/<n>.png  (n = 0..8, row-major)
"""

import json
import logging
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from constants import MAX_TEMPLATE_NAME_LENGTH, NUM_CARD_TYPES

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def default_grid() -> dict:
    return {
        "x": [0.05, 0.35, 0.65, 0.95],
        "y": [0.05, 0.35, 0.65, 0.95],
    }


def is_valid_grid(grid) -> bool:
    """Four ascending cut positions per axis, each within [0, 1]."""
    if not isinstance(grid, dict):
        return False
    for axis in ("x", "y"):
        cuts = grid.get(axis)
        if not isinstance(cuts, list) or len(cuts) != 4:
            return False
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) and 0 <= v <= 1 for v in cuts):
            return False
        if any(b <= a for a, b in zip(cuts, cuts[1:])):
            return False
    return True


@dataclass
class Template:
    id: str
    name: str
    grid: dict
    updated_at: float
    source_path: Path
    slices_dir: Path

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "updatedAt": self.updated_at, "grid": self.grid}


class TemplateStore:
    """Directory-backed template catalogue."""

    def __init__(self, base_dir) -> None:
        self.base_dir = Path(base_dir)

    def _dir(self, template_id: str) -> Optional[Path]:
        if not isinstance(template_id, str) or not _ID_PATTERN.match(template_id):
            return None
        return self.base_dir / template_id

    def load_template(self, template_id: str) -> Optional[Template]:
        """
        Look up a template.

        Returns:
            The Template, or None when it does not exist or is incomplete.
        """
        directory = self._dir(template_id)
        if directory is None:
            return None
        meta_path = directory / "meta.json"
        grid_path = directory / "grid.json"
        source_path = directory / "source.png"
        if not (meta_path.exists() and grid_path.exists() and source_path.exists()):
            return None
        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            grid = json.loads(grid_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable template {template_id}: {e}")
            return None
        return Template(
            id=template_id,
            name=meta.get("name") or template_id,
            grid=grid,
            updated_at=meta.get("updatedAt") or 0,
            source_path=source_path,
            slices_dir=directory / "slices",
        )

    def list_templates(self) -> list[Template]:
        """All complete templates, most recently updated first."""
        if not self.base_dir.exists():
            return []
        templates = []
        for entry in self.base_dir.iterdir():
            if entry.is_dir():
                template = self.load_template(entry.name)
                if template is not None:
                    templates.append(template)
        templates.sort(key=lambda t: t.updated_at, reverse=True)
        return templates

    def _touch_meta(self, directory: Path, **changes) -> None:
        meta_path = directory / "meta.json"
        meta = json.loads(meta_path.read_text(encoding="utf-8"))
        meta.update(changes)
        meta["updatedAt"] = int(time.time() * 1000)
        meta_path.write_text(json.dumps(meta, indent=2), encoding="utf-8")

    def set_grid(self, template_id: str, grid) -> bool:
        directory = self._dir(template_id)
        if directory is None or not (directory / "meta.json").exists():
            return False
        if not is_valid_grid(grid):
            return False
        clean = {"x": [float(v) for v in grid["x"]], "y": [float(v) for v in grid["y"]]}
        (directory / "grid.json").write_text(json.dumps(clean, indent=2), encoding="utf-8")
        self._touch_meta(directory)
        return True

    def rename(self, template_id: str, name) -> bool:
        directory = self._dir(template_id)
        if directory is None or not (directory / "meta.json").exists():
            return False
        new_name = str(name or "").strip()[:MAX_TEMPLATE_NAME_LENGTH]
        if not new_name:
            return False
        self._touch_meta(directory, name=new_name)
        return True

    def delete(self, template_id: str) -> bool:
        directory = self._dir(template_id)
        if directory is None or not directory.is_dir():
            return False
        shutil.rmtree(directory)
        logger.info(f"Template {template_id} deleted")
        return True

    def slice_path(self, template_id: str, index: int) -> Optional[Path]:
        """Path of one card-face tile, if it has been sliced."""
        template = self.load_template(template_id)
        if template is None or not 0 <= index < NUM_CARD_TYPES:
            return None
        path = template.slices_dir / f"{index}.png"
        return path if path.exists() else None

    def is_ready(self) -> bool:
        return self.base_dir.is_dir()
