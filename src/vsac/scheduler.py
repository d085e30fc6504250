import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from . import config
from .models import JobResult
from .utils import describe_error

logger = logging.getLogger(__name__)


class WorkerPool:
    """Fixed number of workers draining a shared job cursor.

    Each worker claims the next unclaimed job, runs ``handler(job, result)``
    and claims again until the list is exhausted. Results land in the slot of
    the job's input position. Exceptions raised by the handler are recorded on
    that job's result and never reach the other workers.
    """

    def __init__(self, concurrency=config.DEFAULT_CONCURRENCY, on_job_start=None, on_job_done=None):
        self.concurrency = max(1, int(concurrency))
        self.on_job_start = on_job_start
        self.on_job_done = on_job_done
        self._lock = threading.Lock()
        self._jobs = []
        self._cursor = 0

    def _claim(self):
        with self._lock:
            if self._cursor >= len(self._jobs):
                return None
            job = self._jobs[self._cursor]
            self._cursor += 1
            return job

    def _worker(self, handler, results):
        while True:
            job = self._claim()
            if job is None:
                return
            result = JobResult(index=job.index, identifier=job.identifier)
            if self.on_job_start:
                self.on_job_start(job)
            try:
                handler(job, result)
            except Exception as exc:
                result.error = describe_error(exc)
                logger.error("[!] [%s] Error: %s", job.identifier, result.error)
            results[job.index] = result
            if self.on_job_done:
                try:
                    self.on_job_done(result)
                except Exception as exc:
                    logger.error("[!] [%s] Completion hook failed: %s", job.identifier, describe_error(exc))

    def run(self, jobs, handler):
        jobs = list(jobs)
        self._jobs = jobs
        self._cursor = 0
        results = [None] * len(jobs)
        if not jobs:
            return results
        workers = min(self.concurrency, len(jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vsac-worker") as executor:
            futures = [executor.submit(self._worker, handler, results) for _ in range(workers)]
            for future in futures:
                future.result()
        return results
