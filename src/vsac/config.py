import re
from datetime import UTC, datetime
from pathlib import Path

# HTTP identity and base endpoints
VSAC_BASE = "https://cts.nlm.nih.gov/fhir"
VSAC_USERNAME = "apikey"  # VSAC basic auth uses a fixed username with the UMLS key as password
FHIR_JSON = "application/fhir+json"
HEADERS = {
    "Accept": FHIR_JSON,
    "User-Agent": "valueset-fetcher/0.1",
}
UPLOAD_HEADERS = {
    "Accept": FHIR_JSON,
    "Content-Type": FHIR_JSON,
}
API_TIMEOUT = 30  # Seconds per HTTP request
API_KEY_ENV = "UMLS_API_KEY"

# Fetch tuning knobs
DEFAULT_MODE = "expansion"
MODES = ("definition", "expansion", "both")
POST_MODES = ("definition", "expanded")
DEFAULT_POST_MODE = "expanded"
DEFAULT_PAGE_SIZE = 1000  # $expand count
DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_RETRIES = 3  # Total attempts for transient errors
RETRY_BASE_DELAY = 1.0  # Seconds; retry k waits base * 2**k
RETRY_JITTER = 0.0  # Fraction of the delay added at random; 0 keeps the plain schedule
RETRYABLE_STATUSES = frozenset({429})  # Plus every 5xx

# Input/output locations
DEFAULT_OUTPUT_DIR = Path("valuesets")
DEFAULT_CACHE_DIR = Path(".vsac_cache")
UNKNOWN_VERSION = "unknown"
LATEST_VERSION = "latest"
OUTPUT_FILENAME = "ValueSet-{oid}-{version}-{mode}.json"
CACHE_PAGE_FILENAME = "vsac-{oid}-{version}{filter}-page-{offset}.json"
CACHE_DEFINITION_FILENAME = "vsac-{oid}-{version}-definition.json"
CACHE_FILTER_SEGMENT = "-filter-{digest}"
CACHE_FILTER_DIGEST_CHARS = 12

# Identifier pattern: digits separated by dots, at least one dot
OID_PATTERN = re.compile(r"\d+(?:\.\d+)+")

# Structural check applied to cached pages before reuse
PAGE_SCHEMA = {
    "type": "object",
    "required": ["resourceType"],
    "properties": {
        "resourceType": {"const": "ValueSet"},
        "expansion": {
            "type": "object",
            "properties": {
                "total": {"type": "integer", "minimum": 0},
                "contains": {"type": "array"},
            },
        },
    },
}

# Run logging and telemetry
RUN_ID = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
STATS_FLUSH_EVERY = 100
