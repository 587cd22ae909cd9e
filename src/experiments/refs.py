"""Named refs pointing at checkpoint ids.

Experiment refs live under ``.quiver/refs/exps`` and promoted branch refs
under ``.quiver/refs/branches``; each file holds one checkpoint id.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from core.constants import BRANCH_REFS_DIR_NAME, EXPERIMENT_REFS_DIR_NAME, REFS_DIR_NAME
from core.errors import QuiverExperimentError

RefKind = Literal["exps", "branches"]
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_KIND_DIRS: dict[RefKind, str] = {
    "exps": EXPERIMENT_REFS_DIR_NAME,
    "branches": BRANCH_REFS_DIR_NAME,
}


class RefStore:
    """File-backed ref namespace."""

    def __init__(self, state_dir: Path) -> None:
        self._root = state_dir / REFS_DIR_NAME

    def read(self, kind: RefKind, name: str) -> str | None:
        """Return the checkpoint id a ref points at, or None when absent."""
        ref_path = self._ref_path(kind, name)
        if not ref_path.is_file():
            return None
        return ref_path.read_text(encoding="utf-8").strip() or None

    def write(self, kind: RefKind, name: str, checkpoint_id: str) -> None:
        """Point a ref at a checkpoint id, creating it when missing."""
        ref_path = self._ref_path(kind, name)
        ref_path.parent.mkdir(parents=True, exist_ok=True)
        ref_path.write_text(checkpoint_id + "\n", encoding="utf-8")

    def delete(self, kind: RefKind, name: str) -> bool:
        """Delete a ref; return whether it existed."""
        ref_path = self._ref_path(kind, name)
        if not ref_path.is_file():
            return False
        ref_path.unlink()
        return True

    def list(self, kind: RefKind) -> dict[str, str]:
        """Return every ref of one kind mapped to its checkpoint id."""
        kind_dir = self._root / _KIND_DIRS[kind]
        if not kind_dir.is_dir():
            return {}
        refs: dict[str, str] = {}
        for ref_path in sorted(kind_dir.iterdir()):
            if ref_path.is_file():
                refs[ref_path.name] = ref_path.read_text(encoding="utf-8").strip()
        return refs

    def _ref_path(self, kind: RefKind, name: str) -> Path:
        if not _NAME_PATTERN.match(name):
            raise QuiverExperimentError(
                f"Invalid ref name '{name}'. Use letters, digits, '.', '_' or '-'."
            )
        return self._root / _KIND_DIRS[kind] / name
