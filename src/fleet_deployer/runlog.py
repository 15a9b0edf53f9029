"""JSON run logs, one file per pipeline run."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .models import ArtifactRef, PipelineResult, Target
from .utils.logging import get_logger

logger = get_logger(__name__)


class RunLog:
    """
    Records what a run did: artifact, stage outcomes, per-target states and
    the exit code. Only addresses are stored for targets; credentials never
    reach the file.
    """

    def __init__(self, log_dir: Path) -> None:
        self.log_dir = Path(log_dir)
        self.path: Optional[Path] = None
        self.data: dict = {}

    def start(self, targets: Sequence[Target]) -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        started = datetime.now()
        self.path = self.log_dir / f"deploy_{started.strftime('%Y%m%d_%H%M%S_%f')}.json"
        self.data = {
            "status": "running",
            "start_time": started.isoformat(),
            "end_time": None,
            "artifact": None,
            "targets": [target.address for target in targets],
            "stages": [],
            "fleet": None,
            "cleanup_succeeded": None,
            "exit_code": None,
        }
        self._save()
        return self.path

    def set_artifact(self, artifact: ArtifactRef) -> None:
        self.data["artifact"] = artifact.reference
        self._save()

    def set_fleet(self, fleet_report) -> None:
        self.data["fleet"] = fleet_report.to_dict() if fleet_report is not None else None
        self._save()

    def finish(self, result: PipelineResult) -> None:
        self.data.update(
            status="success" if result.succeeded else "failed",
            end_time=datetime.now().isoformat(),
            stages=[stage.to_dict() for stage in result.stages],
            failed_stage=result.failed_stage,
            cleanup_succeeded=result.cleanup_succeeded,
            exit_code=result.exit_code,
        )
        self._save()
        logger.info("📄 Run log: %s", self.path)

    def _save(self) -> None:
        if self.path is None:
            return
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(self.data, handle, indent=2, ensure_ascii=False)


def list_run_logs(log_dir: Path) -> List[Path]:
    """Run logs newest first."""
    log_dir = Path(log_dir)
    if not log_dir.exists():
        return []
    return sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)


def load_run_log(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)
