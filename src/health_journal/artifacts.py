# artifacts.py
# Per-job artifact directories. A pure side-effecting sink: every
# intermediate output of a job is written here for later inspection.

import json
import re
import time
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def slug(text: str, max_len: int = 30) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", text)[:max_len]


class JobArtifacts:
    """Writer for a single job's directory."""

    def __init__(self, job_id: str, path: Path) -> None:
        self.job_id = job_id
        self.path = path

    def _target(self, name: str) -> Path:
        return self.path / f"{int(time.time() * 1000)}_{name}"

    def write_text(self, name: str, text: str) -> Path:
        target = self._target(name)
        target.write_text(text, encoding="utf-8")
        return target

    def write_json(self, name: str, obj: Any) -> Path:
        if isinstance(obj, BaseModel):
            payload = obj.model_dump(mode="json")
        elif isinstance(obj, list):
            payload = [o.model_dump(mode="json") if isinstance(o, BaseModel) else o for o in obj]
        else:
            payload = obj
        return self.write_text(name, json.dumps(payload, indent=2, default=str))

    def write_final_answer(self, text: str) -> Path:
        target = self.path / "final_answer.md"
        target.write_text(text, encoding="utf-8")
        return target

    def write_error(self, error: BaseException) -> Path:
        trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        target = self.path / "error.txt"
        target.write_text(
            f"Error occurred during processing:\n\n{error!r}\n\nStack trace:\n{trace}",
            encoding="utf-8",
        )
        return target


class ArtifactStore:
    """Root directory holding one subdirectory per job."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def new_job(self) -> JobArtifacts:
        job_id = str(int(time.time() * 1000))
        path = self.root / job_id
        # two jobs in the same millisecond
        while path.exists():
            job_id = str(int(job_id) + 1)
            path = self.root / job_id
        path.mkdir(parents=True)
        return JobArtifacts(job_id, path)

    def list_jobs(self) -> list[dict[str, Any]]:
        """Job directories, newest first."""
        entries = []
        for path in self.root.iterdir():
            if not path.is_dir():
                continue
            files = sorted(p.name for p in path.iterdir())
            mtime = path.stat().st_mtime
            job = {
                "job_id": path.name,
                "file_count": len(files),
                "files": files,
                "created": datetime.fromtimestamp(mtime, timezone.utc).isoformat(),
            }
            entries.append((mtime, job))
        entries.sort(key=lambda entry: entry[0], reverse=True)
        return [job for _, job in entries]

    def read(self, job_id: str, filename: str) -> str:
        """Contents of one artifact. Raises FileNotFoundError, including for paths outside the job."""
        job_dir = (self.root / job_id).resolve()
        target = (job_dir / filename).resolve()
        if job_dir.parent != self.root.resolve() or target.parent != job_dir or not target.is_file():
            raise FileNotFoundError(f"{job_id}/{filename}")
        return target.read_text(encoding="utf-8")
