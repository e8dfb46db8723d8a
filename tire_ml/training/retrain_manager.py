"""
Retraining Job Log
==================
Append-only record of retraining requests.

Each request is written to ``retraining-jobs/<job_id>.json``. Records are
markers, not queue items: execution is handed to the pipeline orchestrator
through a callback, and the newest record tells a restarted process when the
last retrain happened.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import StorageError

logger = logging.getLogger(__name__)

EXPECTED_DURATION = timedelta(minutes=30)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse the ISO timestamps written by this module."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class RetrainingJob:
    """Record of a single retraining request."""
    job_id: str
    triggered_at: str
    status: str
    expected_completion: str
    sample_count: int
    forced: bool = False

    @classmethod
    def scheduled(cls, now: float, sample_count: int, forced: bool = False) -> "RetrainingJob":
        moment = datetime.fromtimestamp(now, tz=timezone.utc)
        return cls(
            job_id=f"retrain_{int(now * 1000)}",
            triggered_at=_iso(moment),
            status="scheduled",
            expected_completion=_iso(moment + EXPECTED_DURATION),
            sample_count=sample_count,
            forced=forced,
        )

    @property
    def triggered_timestamp(self) -> float:
        return parse_timestamp(self.triggered_at).timestamp()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "jobId": data["job_id"],
            "triggeredAt": data["triggered_at"],
            "status": data["status"],
            "expectedCompletion": data["expected_completion"],
            "sampleCount": data["sample_count"],
            "forced": data["forced"],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetrainingJob":
        return cls(
            job_id=data["jobId"],
            triggered_at=data["triggeredAt"],
            status=data.get("status", "scheduled"),
            expected_completion=data.get("expectedCompletion", data["triggeredAt"]),
            sample_count=int(data.get("sampleCount", 0)),
            forced=bool(data.get("forced", False)),
        )


class RetrainingJobLog:
    """Reads and appends retraining job records."""

    def __init__(self, jobs_dir: Union[str, Path]):
        self.jobs_dir = Path(jobs_dir)

    def append(self, job: RetrainingJob) -> Path:
        path = self.jobs_dir / f"{job.job_id}.json"
        try:
            self.jobs_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(job.to_dict(), f, indent=2)
        except OSError as e:
            raise StorageError(f"Failed to write retraining job {job.job_id}: {e}") from e
        logger.info(f"Retraining job recorded: {job.job_id} ({job.sample_count} samples)")
        return path

    def list(self) -> List[RetrainingJob]:
        """All readable records, oldest first."""
        if not self.jobs_dir.exists():
            return []
        jobs = []
        for path in self.jobs_dir.glob("retrain_*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    jobs.append(RetrainingJob.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Could not read retraining job {path.name}: {e}")
        return sorted(jobs, key=lambda job: job.triggered_timestamp)

    def latest(self) -> Optional[RetrainingJob]:
        jobs = self.list()
        return jobs[-1] if jobs else None
