from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .utils import ensure_parent


def _stamp(dt: datetime) -> str:
    return dt.isoformat(timespec="seconds")


def _dump_json(path: Path, payload: Dict[str, object]) -> None:
    ensure_parent(path)
    tmp_path = path.parent / f"{path.name}.tmp"
    tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    tmp_path.replace(path)


class ProgressLog:
    """JSON record of a pipeline run, plus a ``latest.json`` pointer next to it."""

    LATEST_KEYS = ("status", "started_at", "finished_at", "last_completed_step")

    def __init__(
        self,
        path: Path,
        *,
        session: str,
        dry_run: bool,
        run_order: List[str],
        started_at: Optional[datetime] = None,
    ) -> None:
        self.path = path
        self.latest_path = path.parent / "latest.json"
        self.session = session
        self._open: Dict[str, datetime] = {}
        self.data: Dict[str, object] = {
            "session": session,
            "dry_run": dry_run,
            "started_at": _stamp(started_at or datetime.now()),
            "status": "running",
            "run_order": list(run_order),
            "steps": [],
        }
        self._write()

    @property
    def steps(self) -> List[Dict[str, object]]:
        return self.data["steps"]  # type: ignore[return-value]

    def _write(self) -> None:
        _dump_json(self.path, self.data)
        latest: Dict[str, object] = {"session": self.session, "progress_file": self.path.name}
        latest.update({key: self.data[key] for key in self.LATEST_KEYS if key in self.data})
        _dump_json(self.latest_path, latest)

    def _entry(self, step: str) -> Dict[str, object]:
        for entry in reversed(self.steps):
            if entry.get("step") == step and entry.get("status") != "planned":
                return entry
        raise KeyError(f"No step entry recorded for {step!r}")

    def plan_step(self, step: str) -> None:
        self.steps.append({"step": step, "status": "planned", "noted_at": _stamp(datetime.now())})
        self._write()

    def start_step(self, step: str) -> None:
        started = datetime.now()
        self._open[step] = started
        self.steps.append({"step": step, "status": "running", "started_at": _stamp(started)})
        self._write()

    def _close_entry(self, step: str, status: str, finished: datetime, message: Optional[str]) -> None:
        entry = self._entry(step)
        entry["status"] = status
        entry["finished_at"] = _stamp(finished)
        started = self._open.pop(step, None)
        if started is not None:
            entry["duration_seconds"] = round((finished - started).total_seconds(), 2)
        if message:
            entry.setdefault("message", message)

    def complete_step(self, step: str, *, status: str = "completed", message: Optional[str] = None) -> None:
        self._close_entry(step, status, datetime.now(), message)
        if status == "completed":
            self.data["last_completed_step"] = step
        self._write()

    def fail_step(self, step: str, message: Optional[str] = None) -> None:
        self.complete_step(step, status="failed", message=message)

    def finish(self, *, status: str, message: Optional[str] = None) -> None:
        finished = datetime.now()
        self.data["status"] = status
        self.data["finished_at"] = _stamp(finished)
        if message:
            self.data["message"] = message
        # Steps still open when the run ends count as failed.
        for step in list(self._open):
            self._close_entry(step, "failed", finished, message)
        self._write()
