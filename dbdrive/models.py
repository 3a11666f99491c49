import re
from datetime import date, datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List


# Custom-format pg_dump archive (pg_dump -Fc)
ARTIFACT_EXTENSION = 'pgdump'


def artifact_name(db_name: str, day: date) -> str:
    """Logical artifact name: {db}_{YYYY-MM-DD}.pgdump"""
    return f"{db_name}_{day.isoformat()}.{ARTIFACT_EXTENSION}"


def is_artifact_name(name: str, db_name: str) -> bool:
    """True if name is exactly {db_name}_{YYYY-MM-DD}.pgdump."""
    pattern = rf"{re.escape(db_name)}_\d{{4}}-\d{{2}}-\d{{2}}\.{ARTIFACT_EXTENSION}"
    return re.fullmatch(pattern, name) is not None


def format_size(size_bytes: Optional[int]) -> str:
    """Human readable size (e.g. 1.5M), in the style of du -h."""
    if size_bytes is None:
        return 'unknown'
    size = float(size_bytes)
    for unit in ('B', 'K', 'M', 'G', 'T'):
        if size < 1024 or unit == 'T':
            if unit == 'B':
                return f"{int(size)}B"
            return f"{size:.1f}{unit}"
        size /= 1024


@dataclass
class Artifact:
    """A named, dated backup file. Identity is the logical name."""
    name: str
    created_on: date
    local_path: Optional[str] = None
    size_bytes: Optional[int] = None

    def __repr__(self):
        return f'<Artifact {self.name} size={self.size_bytes}>'


class RunStatus(Enum):
    SUCCESS = 'success'
    DUMP_FAILED = 'dump_failed'
    UPLOAD_FAILED = 'upload_failed'


@dataclass
class StepResult:
    """Outcome of one orchestrator step."""
    step: str
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls, step: str) -> 'StepResult':
        return cls(step=step, ok=True)

    @classmethod
    def failure(cls, step: str, error) -> 'StepResult':
        return cls(step=step, ok=False, error=str(error))


@dataclass
class RunResult:
    """Outcome of one backup run, consumed by the notifier and the exit code."""
    status: Optional[RunStatus] = None
    artifact: Optional[Artifact] = None
    pruned: List[str] = field(default_factory=list)
    monthly_copied: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    steps: List[StepResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.status is RunStatus.SUCCESS else 1

    def step(self, name: str) -> Optional[StepResult]:
        """Most recent result recorded for a step, if it ran."""
        for result in reversed(self.steps):
            if result.step == name:
                return result
        return None

    def __repr__(self):
        status = self.status.value if self.status else 'running'
        return f'<RunResult status={status} artifact={self.artifact.name if self.artifact else None}>'
