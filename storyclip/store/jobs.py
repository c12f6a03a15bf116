import json
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from storyclip.core.models import GenerationJob


def _repo_root() -> Path:
    # storyclip/store/jobs.py -> storyclip/store -> storyclip -> repo root
    return Path(__file__).resolve().parents[2]


def default_job_db_path() -> Path:
    return _repo_root() / "data" / "jobs.db"


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS generation_jobs (
  job_id TEXT PRIMARY KEY,
  clip_type TEXT,
  task TEXT,
  model_id TEXT,
  provider_id TEXT,
  prompt TEXT,
  seed INTEGER,
  duration_seconds REAL,
  references_json TEXT,              -- JSON list of active reference slots
  status TEXT NOT NULL,              -- queued/processing/completed/failed
  progress INTEGER NOT NULL DEFAULT 0,
  result_url TEXT,
  error_kind TEXT,
  error_message TEXT,
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON generation_jobs(status, updated_at);
"""


@dataclass
class JobStore:
    """Read/write contract over the jobs table; the core only touches these columns."""

    db_path: Path
    conn: sqlite3.Connection

    @classmethod
    def open(cls, db_path: Optional[os.PathLike] = None) -> "JobStore":
        path = Path(db_path) if db_path is not None else default_job_db_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")

        store = cls(db_path=path, conn=conn)
        store.conn.executescript(SCHEMA_SQL)
        store.conn.execute("INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?)", ("schema_version", "1"))
        return store

    def close(self) -> None:
        self.conn.close()

    def _now(self) -> float:
        return time.time()

    def _j(self, obj: Any) -> Optional[str]:
        if obj is None:
            return None
        return json.dumps(obj, ensure_ascii=True, separators=(",", ":"), sort_keys=True)

    def record_job(self, job: GenerationJob) -> None:
        req = job.request
        ts = self._now()
        self.conn.execute(
            """
            INSERT INTO generation_jobs(job_id, clip_type, task, model_id, provider_id, prompt, seed,
                                        duration_seconds, references_json, status, progress,
                                        created_at, updated_at)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id) DO NOTHING
            """,
            (
                job.id,
                req.clip_type.value if req else None,
                req.task if req else None,
                req.model.id if req else None,
                req.model.provider_id if req else None,
                req.prompt if req else None,
                req.seed if req else None,
                req.duration_seconds if req else None,
                self._j([s.to_payload() for s in req.reference_slots]) if req else None,
                job.status.value,
                job.progress,
                job.created_at.timestamp(),
                ts,
            ),
        )

    def update_job(self, job: GenerationJob) -> bool:
        cur = self.conn.execute(
            """
            UPDATE generation_jobs
            SET status=?, progress=?, result_url=?, error_kind=?, error_message=?, updated_at=?
            WHERE job_id=?
            """,
            (
                job.status.value,
                job.progress,
                job.result.asset_url if job.result else None,
                job.error.value if job.error else None,
                job.error_message,
                self._now(),
                job.id,
            ),
        )
        if cur.rowcount == 0:
            # Tracking a job submitted elsewhere: create a bare record.
            self.record_job(job)
            return self.update_job(job)
        return True

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        cur = self.conn.execute("SELECT * FROM generation_jobs WHERE job_id=?", (job_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        if status:
            cur = self.conn.execute(
                "SELECT * FROM generation_jobs WHERE status=? ORDER BY created_at DESC LIMIT ?",
                (status, int(limit)),
            )
        else:
            cur = self.conn.execute(
                "SELECT * FROM generation_jobs ORDER BY created_at DESC LIMIT ?",
                (int(limit),),
            )
        return [dict(r) for r in cur.fetchall()]
