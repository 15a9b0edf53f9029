"""Per-run scratch directories for source checkouts."""

from __future__ import annotations

import hashlib
import json
import shutil
import time
from dataclasses import dataclass
from pathlib import Path


@dataclass
class WorkspaceContext:
    """A prepared workspace for a single pipeline run."""

    root: Path
    run_dir: Path
    source_dir: Path
    metadata_file: Path
    run_id: str


class WorkspaceManager:
    """Creates and removes the directory a run fetches its source into."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def prepare(self, label: str) -> WorkspaceContext:
        self.root.mkdir(parents=True, exist_ok=True)
        run_id = self._generate_run_id(label)
        run_dir = self.root / f"{self._slugify(label)}-{run_id}"
        source_dir = run_dir / "source"
        run_dir.mkdir(parents=True, exist_ok=True)

        metadata_file = run_dir / "metadata.json"
        context = WorkspaceContext(
            root=self.root,
            run_dir=run_dir,
            source_dir=source_dir,
            metadata_file=metadata_file,
            run_id=run_id,
        )
        self.update_metadata(context, label=label, run_id=run_id, created_at=int(time.time()))
        return context

    def cleanup(self, context: WorkspaceContext) -> None:
        if context.run_dir.exists():
            shutil.rmtree(context.run_dir)

    def update_metadata(self, context: WorkspaceContext, **values: object) -> None:
        payload = self.read_metadata(context)
        payload.update(values)
        context.metadata_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def read_metadata(self, context: WorkspaceContext) -> dict:
        if context.metadata_file.exists():
            return json.loads(context.metadata_file.read_text(encoding="utf-8"))
        return {}

    @staticmethod
    def _slugify(label: str) -> str:
        slug = label.rstrip("/").split("/")[-1]
        if slug.endswith(".git"):
            slug = slug[:-4]
        slug = "".join(c if c.isalnum() or c in "-_." else "-" for c in slug)
        return slug or "run"

    @staticmethod
    def _generate_run_id(label: str) -> str:
        token = f"{label}-{time.time_ns()}".encode("utf-8")
        return hashlib.sha1(token).hexdigest()[:8]
