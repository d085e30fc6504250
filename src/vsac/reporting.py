import json
import os
import sys
import threading
import time
from dataclasses import asdict, dataclass, field

from tqdm import tqdm

from . import config


@dataclass
class RunSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0
    counters: dict = field(default_factory=dict)

    def as_dict(self):
        payload = asdict(self)
        payload["run_id"] = config.RUN_ID
        return payload

    def render(self):
        lines = [
            "Summary:",
            f"  OIDs processed: {self.processed}",
            f"  Downloaded: {self.succeeded}",
            f"  Errors: {self.failed}",
            f"  Elapsed: {self.elapsed_seconds:.1f}s",
        ]
        for name, value in self.counters.items():
            lines.append(f"  {name.replace('_', ' ').capitalize()}: {value}")
        return "\n".join(lines)


class ProgressReporter:
    """Counts job completions as they happen and drives a tqdm bar."""

    def __init__(self, total, clock=time.monotonic, disable=None):
        self.total = total
        self.clock = clock
        self.completed = 0
        self.succeeded = 0
        self.failed = 0
        self._lock = threading.Lock()
        self._started_at = clock()
        if disable is None:
            disable = not sys.stderr.isatty()
        self._progress = tqdm(total=total, desc="Fetching ValueSets", unit="oid", disable=disable)

    @property
    def elapsed(self):
        return self.clock() - self._started_at

    def job_finished(self, result):
        with self._lock:
            self.completed += 1
            if result.ok:
                self.succeeded += 1
            else:
                self.failed += 1
            self._progress.set_postfix(errors=self.failed, elapsed=f"{self.elapsed:.1f}s", refresh=False)
            self._progress.update(1)

    def finish(self, counters=None):
        with self._lock:
            self._progress.close()
            return RunSummary(
                processed=self.total,
                succeeded=self.succeeded,
                failed=self.failed,
                elapsed_seconds=round(self.elapsed, 3),
                counters=dict(counters or {}),
            )


class StatsLogger:
    """Append-only JSONL logger for per-job fetch diagnostics."""

    def __init__(self, stats_path, flush_every=config.STATS_FLUSH_EVERY):
        self.stats_path = stats_path
        self.run_id = config.RUN_ID
        self.flush_every = flush_every
        self.buffer = []
        self._lock = threading.Lock()

    def log(self, record):
        """Buffer a single JSON object line enriched with the run identifier."""
        if not self.stats_path:
            return
        enriched = {"run_id": self.run_id}
        enriched.update(record)
        line = json.dumps(enriched, ensure_ascii=True)
        with self._lock:
            self.buffer.append(line)
            if len(self.buffer) >= self.flush_every:
                self._flush_locked()

    def flush(self):
        with self._lock:
            self._flush_locked()

    def _flush_locked(self):
        if not self.buffer:
            return
        parent = os.path.dirname(os.fspath(self.stats_path))
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.stats_path, "a", encoding="utf-8") as fh:
            fh.write("\n".join(self.buffer))
            fh.write("\n")
        self.buffer.clear()
