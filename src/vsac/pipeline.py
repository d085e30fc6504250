"""Per-OID fetch pipeline and the run that schedules it across workers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from . import config
from .caching import PageCache
from .errors import MissingCredential, UploadError
from .fetching import ValueSetFetcher, build_vsac_session, merge_expansion_pages
from .models import Job, JobResult, Page
from .output import write_valueset_file
from .reporting import ProgressReporter, RunSummary, StatsLogger
from .retry import RetryPolicy
from .scheduler import WorkerPool
from .upload import UploadReport, ValueSetUploader
from .utils import derive_version, normalize_oid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOptions:
    identifiers: tuple[str, ...]
    api_key: Optional[str]
    mode: str = config.DEFAULT_MODE
    version: Optional[str] = None
    filter_text: Optional[str] = None
    output_dir: Path = config.DEFAULT_OUTPUT_DIR
    cache_dir: Optional[Path] = config.DEFAULT_CACHE_DIR
    page_size: int = config.DEFAULT_PAGE_SIZE
    concurrency: int = config.DEFAULT_CONCURRENCY
    max_retries: int = config.DEFAULT_MAX_RETRIES
    retry_base_delay: float = config.RETRY_BASE_DELAY
    retry_jitter: float = config.RETRY_JITTER
    post_url: Optional[str] = None
    post_mode: str = config.DEFAULT_POST_MODE
    bundle: bool = False
    dry_run: bool = False
    stats_file: Optional[Path] = None

    @property
    def wants_definition(self) -> bool:
        return self.mode in ("definition", "both")

    @property
    def wants_expansion(self) -> bool:
        return self.mode in ("expansion", "both")


@dataclass
class RunReport:
    results: list[JobResult]
    summary: RunSummary
    upload: Optional[UploadReport] = None
    upload_error: Optional[str] = None
    files: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.upload_error else 0


def stub_definition(oid: str, version: Optional[str]) -> dict[str, Any]:
    return {"resourceType": "ValueSet", "id": oid, "version": version or config.UNKNOWN_VERSION}


def stub_expansion_page(oid: str, version: Optional[str]) -> Page:
    payload = stub_definition(oid, version)
    payload["expansion"] = {"contains": []}
    return Page(oid, version, 0, payload)


class ValueSetPipeline:
    def __init__(
        self,
        options: RunOptions,
        fetcher: Optional[ValueSetFetcher] = None,
        uploader: Optional[ValueSetUploader] = None,
        sleep=time.sleep,
    ) -> None:
        self.options = options
        self.fetcher = fetcher
        self.uploader = uploader
        self.sleep = sleep
        self.cache: Optional[PageCache] = fetcher.cache if fetcher is not None else None
        self.stats_logger = StatsLogger(options.stats_file)
        self._started: dict[int, float] = {}
        self._owned_sessions: list[Any] = []

    def _build_fetcher(self) -> ValueSetFetcher:
        opts = self.options
        if opts.cache_dir is not None:
            self.cache = PageCache(opts.cache_dir)
        retry_policy = RetryPolicy(
            max_attempts=opts.max_retries,
            base_delay=opts.retry_base_delay,
            jitter=opts.retry_jitter,
            sleep=self.sleep,
        )
        session = build_vsac_session(opts.api_key)
        self._owned_sessions.append(session)
        return ValueSetFetcher(
            session,
            cache=self.cache,
            retry_policy=retry_policy,
            page_size=opts.page_size,
        )

    def process_job(self, job: Job, result: JobResult) -> JobResult:
        """Normalize, fetch, merge and write one identifier, filling ``result`` as stages finish."""
        opts = self.options
        oid = normalize_oid(job.identifier)
        result.oid = oid
        version_label = None

        if opts.wants_definition:
            if opts.dry_run:
                definition = stub_definition(oid, opts.version)
            else:
                definition = self.fetcher.fetch_definition(oid, opts.version)
            version_label = derive_version(definition) or opts.version or config.UNKNOWN_VERSION
            path = write_valueset_file(opts.output_dir, oid, version_label, definition, "definition")
            result.definition = definition
            result.version = version_label
            result.files.append(str(path))

        if opts.wants_expansion:
            if opts.dry_run:
                pages = [stub_expansion_page(oid, opts.version)]
            else:
                pages = self.fetcher.fetch_expansion(oid, opts.version, opts.filter_text)
            merged = merge_expansion_pages(pages)
            version_label = derive_version(merged) or version_label or opts.version or config.UNKNOWN_VERSION
            path = write_valueset_file(opts.output_dir, oid, version_label, merged, "expanded")
            result.expansion = merged
            result.pages = len(pages)
            result.version = version_label
            result.files.append(str(path))
        return result

    def _job_started(self, job: Job) -> None:
        self._started[job.index] = time.monotonic()

    def _log_job(self, result: JobResult) -> None:
        started = self._started.pop(result.index, None)
        self.stats_logger.log(
            {
                "index": result.index,
                "identifier": result.identifier,
                "oid": result.oid,
                "status": "ok" if result.ok else "error",
                "version": result.version,
                "pages": result.pages,
                "files": result.files,
                "error": result.error,
                "seconds": round(time.monotonic() - started, 3) if started is not None else None,
            }
        )

    def _counters(self, upload: Optional[UploadReport]) -> dict[str, int]:
        counters = {}
        if self.fetcher is not None:
            counters["network_calls"] = self.fetcher.stats["network_calls"]
            counters["cache_hits"] = self.fetcher.stats["cache_hits"]
        if self.cache is not None:
            counters["cache_writes"] = self.cache.stats["writes"]
            counters["cache_invalid"] = self.cache.stats["invalid"]
        if upload is not None:
            counters["uploaded"] = upload.succeeded
            counters["upload_failures"] = upload.failed
        return counters

    def _upload(self, results: list[JobResult]) -> UploadReport:
        opts = self.options
        if self.uploader is None:
            self.uploader = ValueSetUploader(opts.post_url, dry_run=opts.dry_run)
            self._owned_sessions.append(self.uploader.session)
        resources = [r.resource_for(opts.post_mode) for r in results]
        resources = [resource for resource in resources if resource is not None]
        logger.info("[*] Uploading %s ValueSet(s) to %s (%s)", len(resources), opts.post_url, opts.post_mode)
        return self.uploader.upload(resources, bundle=opts.bundle)

    def close(self) -> None:
        """Close the HTTP sessions this pipeline opened itself; injected ones are left alone."""
        while self._owned_sessions:
            self._owned_sessions.pop().close()

    def run(self) -> RunReport:
        opts = self.options
        if not opts.api_key:
            raise MissingCredential(config.API_KEY_ENV)
        try:
            return self._run()
        finally:
            self.close()

    def _run(self) -> RunReport:
        opts = self.options
        if opts.dry_run:
            logger.info("[*] Dry run enabled. No requests will be made and no cache entries written.")
        elif self.fetcher is None:
            self.fetcher = self._build_fetcher()

        jobs = [Job(index, identifier) for index, identifier in enumerate(opts.identifiers)]
        logger.info("[*] Fetching %s ValueSet(s) with %s worker(s), mode=%s", len(jobs), opts.concurrency, opts.mode)
        reporter = ProgressReporter(len(jobs))

        def job_done(result: JobResult) -> None:
            reporter.job_finished(result)
            self._log_job(result)

        pool = WorkerPool(opts.concurrency, on_job_start=self._job_started, on_job_done=job_done)
        try:
            results = pool.run(jobs, self.process_job)
        finally:
            self.stats_logger.flush()

        upload_report = None
        upload_error = None
        if opts.post_url:
            try:
                upload_report = self._upload(results)
            except UploadError as exc:
                upload_error = exc.message
                logger.error("[!] %s", exc.message)

        summary = reporter.finish(self._counters(upload_report))
        files = [path for result in results for path in result.files]
        return RunReport(results, summary, upload_report, upload_error, files)
