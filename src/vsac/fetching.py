import copy
import logging
import threading

import requests

from . import config
from .errors import EmptyPageSequence
from .models import CacheKey, Page
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_vsac_session(api_key):
    """Session authenticated against VSAC with the fixed ``apikey`` username."""
    session = requests.Session()
    session.auth = (config.VSAC_USERNAME, api_key)
    session.headers.update(config.HEADERS)
    return session


class ValueSetFetcher:
    """Definition and paginated $expand retrieval through the page cache and retry policy."""

    def __init__(
        self,
        session,
        cache=None,
        retry_policy=None,
        page_size=config.DEFAULT_PAGE_SIZE,
        base_url=config.VSAC_BASE,
        timeout=config.API_TIMEOUT,
    ):
        self.session = session
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy()
        self.page_size = page_size
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._lock = threading.Lock()
        self.stats = {
            "network_calls": 0,
            "cache_hits": 0,
        }

    def _count(self, stat):
        with self._lock:
            self.stats[stat] += 1

    def _get_json(self, key, path, params):
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                self._count("cache_hits")
                return cached

        url = f"{self.base_url}{path}"

        def request():
            self._count("network_calls")
            return self.session.get(url, params=params or None, timeout=self.timeout)

        response = self.retry_policy.call(request, description=f"GET {path}")
        payload = response.json()
        if self.cache is not None:
            self.cache.put(key, payload)
        return payload

    def fetch_definition(self, oid, version=None):
        params = {}
        if version:
            params["valueSetVersion"] = version
        key = CacheKey(oid, version)
        return self._get_json(key, f"/ValueSet/{oid}", params)

    def fetch_expansion(self, oid, version=None, filter_text=None):
        """Collect $expand pages in offset order.

        Fetching stops on a page with no items or once the running item count
        reaches the declared total. A short page without a total does not stop
        the loop; the next request is expected to come back empty.
        """
        pages = []
        offset = 0
        received = 0
        while True:
            params = {"offset": offset, "count": self.page_size}
            if version:
                params["valueSetVersion"] = version
            if filter_text:
                params["filter"] = filter_text
            key = CacheKey(oid, version, offset, filter_text)
            payload = self._get_json(key, f"/ValueSet/{oid}/$expand", params)
            page = Page(oid, version, offset, payload)
            pages.append(page)
            if page.count == 0:
                break
            received += page.count
            total = page.total
            if total is not None and received >= total:
                break
            offset += page.count
        logger.debug("[*] %s: %s expansion page(s), %s item(s)", oid, len(pages), received)
        return pages


def merge_expansion_pages(pages):
    """Combine ordered expansion pages into the first page with every item concatenated."""
    if not pages:
        raise EmptyPageSequence("No expansion pages to merge.")
    merged = copy.deepcopy(pages[0].payload)
    expansion = dict(merged.get("expansion") or {})
    expansion["contains"] = [copy.deepcopy(item) for page in pages for item in page.items]
    merged["expansion"] = expansion
    return merged
