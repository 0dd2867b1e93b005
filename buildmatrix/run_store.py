"""
RunStore - Persist run records.

Each pipeline run is stored as one RunRecord including the terminal outcome
of every job instance. Artifacts are not stored: they live in the instance
workspaces for the lifetime of the run.

Storage backends:
- In-memory (for testing)
- File-based (one JSON document per run)
"""

import json
import random
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from buildmatrix.schemas import RunRecord


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    # Timestamp component (48 bits = 10 chars in base32)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(ALPHABET[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    # Random component (80 bits = 16 chars in base32)
    random_part = "".join(random.choice(ALPHABET) for _ in range(16))

    return timestamp_part + random_part


class RunStore(ABC):
    """Abstract base class for run record storage."""

    @abstractmethod
    def save_run(self, record: RunRecord) -> None:
        """Store or replace a run record."""
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[RunRecord]:
        """
        Retrieve a run record by ID.

        Returns:
            The RunRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def list_runs(self, pipeline_id: Optional[str] = None, limit: Optional[int] = None) -> list[RunRecord]:
        """
        List run records, most recent first.

        Args:
            pipeline_id: Only runs of this pipeline
            limit: Maximum number of records
        """
        pass


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._runs: dict[str, RunRecord] = {}

    def save_run(self, record: RunRecord) -> None:
        self._runs[record.run_id] = record

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def list_runs(self, pipeline_id: Optional[str] = None, limit: Optional[int] = None) -> list[RunRecord]:
        runs = [
            r for r in self._runs.values()
            if pipeline_id is None or r.pipeline_id == pipeline_id
        ]
        runs.sort(key=lambda r: r.run_id, reverse=True)
        return runs[:limit] if limit is not None else runs


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Directory structure:
        runs_dir/
            {run_id}.json
    """

    def __init__(self, runs_dir: Path | str):
        """
        Initialize the file store.

        Args:
            runs_dir: Directory for run documents (created on first write)
        """
        self._runs_dir = Path(runs_dir)

    @property
    def runs_dir(self) -> Path:
        return self._runs_dir

    def _run_path(self, run_id: str) -> Path:
        return self._runs_dir / f"{run_id}.json"

    def save_run(self, record: RunRecord) -> None:
        self._runs_dir.mkdir(parents=True, exist_ok=True)
        path = self._run_path(record.run_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(record.to_dict(), indent=2))
        tmp_path.replace(path)

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        path = self._run_path(run_id)
        if not path.exists():
            return None
        with open(path) as f:
            return RunRecord.from_dict(json.load(f))

    def list_runs(self, pipeline_id: Optional[str] = None, limit: Optional[int] = None) -> list[RunRecord]:
        if not self._runs_dir.exists():
            return []

        runs = []
        # ULIDs sort by time, so file names sort by start time
        for path in sorted(self._runs_dir.glob("*.json"), reverse=True):
            with open(path) as f:
                record = RunRecord.from_dict(json.load(f))
            if pipeline_id is not None and record.pipeline_id != pipeline_id:
                continue
            runs.append(record)
            if limit is not None and len(runs) >= limit:
                break
        return runs
