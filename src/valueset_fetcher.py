import argparse
import logging
import os
import sys
from pathlib import Path

from vsac import config
from vsac.errors import MissingCredential
from vsac.pipeline import RunOptions, ValueSetPipeline
from vsac.utils import write_json_atomic

logger = logging.getLogger(__name__)


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=config.LOG_FORMAT,
        datefmt=config.LOG_DATEFMT,
    )


def read_identifiers(ids, ids_file=None):
    """Positional identifiers followed by non-blank, non-comment lines of ``ids_file``."""
    identifiers = list(ids or [])
    if ids_file:
        with open(ids_file, "r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line and not line.startswith("#"):
                    identifiers.append(line)
    return identifiers


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Download VSAC ValueSets and optionally upload them to a FHIR server.",
    )
    parser.add_argument("ids", nargs="*", help="VSAC OIDs, urn:oid: identifiers or canonical URLs.")
    parser.add_argument("--ids-file", default=None, help="File with one identifier per line.")
    parser.add_argument("--mode", choices=config.MODES, default=config.DEFAULT_MODE)
    parser.add_argument("--version", default=None, help="Specific VSAC ValueSet version.")
    parser.add_argument("--filter", dest="filter_text", default=None, help="Server-side filter for $expand.")
    parser.add_argument("--out", type=Path, default=config.DEFAULT_OUTPUT_DIR, help="Output directory.")
    parser.add_argument("--post", default=None, help="FHIR base URL to post to after download.")
    parser.add_argument("--post-mode", choices=config.POST_MODES, default=config.DEFAULT_POST_MODE)
    parser.add_argument("--bundle", action="store_true", help="Wrap uploads in a transaction Bundle.")
    parser.add_argument("--umls-key", default=None, help=f"UMLS API key (overrides {config.API_KEY_ENV}).")
    parser.add_argument("--count", type=int, default=config.DEFAULT_PAGE_SIZE, help="Expansion page size.")
    parser.add_argument("--concurrency", type=int, default=config.DEFAULT_CONCURRENCY, help="Concurrent OIDs to fetch.")
    parser.add_argument(
        "--retry",
        type=int,
        default=config.DEFAULT_MAX_RETRIES,
        help="Max attempts per request for transient (429/5xx) errors.",
    )
    parser.add_argument("--retry-base-delay", type=float, default=config.RETRY_BASE_DELAY)
    parser.add_argument("--retry-jitter", type=float, default=config.RETRY_JITTER)
    parser.add_argument("--cache", type=Path, default=config.DEFAULT_CACHE_DIR, help="Cache dir for fetched pages.")
    parser.add_argument("--no-cache", action="store_true", help="Always go to the network.")
    parser.add_argument("--dry-run", action="store_true", help="Print actions without making changes.")
    parser.add_argument("--stats-file", type=Path, default=None, help="Per-OID JSONL diagnostics.")
    parser.add_argument("--summary-file", type=Path, default=None, help="Write the run summary as JSON.")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)
    if not args.ids and not args.ids_file:
        parser.error("at least one identifier (or --ids-file) is required")
    if args.count < 1:
        parser.error("--count must be positive")
    return args


def build_options(args, environ=None):
    environ = os.environ if environ is None else environ
    return RunOptions(
        identifiers=tuple(read_identifiers(args.ids, args.ids_file)),
        api_key=args.umls_key or environ.get(config.API_KEY_ENV),
        mode=args.mode,
        version=args.version,
        filter_text=args.filter_text,
        output_dir=args.out,
        cache_dir=None if args.no_cache else args.cache,
        page_size=args.count,
        concurrency=max(1, args.concurrency),
        max_retries=args.retry,
        retry_base_delay=args.retry_base_delay,
        retry_jitter=args.retry_jitter,
        post_url=args.post,
        post_mode=args.post_mode,
        bundle=args.bundle,
        dry_run=args.dry_run,
        stats_file=args.stats_file,
    )


def main(argv=None, environ=None):
    args = parse_args(argv)
    configure_logging(args.log_level)
    options = build_options(args, environ)
    try:
        report = ValueSetPipeline(options).run()
    except MissingCredential as exc:
        logger.error("Fatal error: %s", exc.message)
        return 1

    print(report.summary.render())
    if args.summary_file:
        payload = report.summary.as_dict()
        payload["errors"] = [
            {"identifier": result.identifier, "error": result.error} for result in report.results if not result.ok
        ]
        payload["upload_error"] = report.upload_error
        write_json_atomic(args.summary_file, payload)
        logger.info("[+] Summary written to %s", args.summary_file)
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
