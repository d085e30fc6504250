import json
import logging
import threading
from pathlib import Path

import jsonschema

from . import config
from .utils import filter_digest, read_json, write_json_atomic

logger = logging.getLogger(__name__)


class PageCache:
    """Directory of raw VSAC responses, one JSON file per (oid, version, offset)."""

    def __init__(self, cache_dir=config.DEFAULT_CACHE_DIR, schema=config.PAGE_SCHEMA):
        self.cache_dir = Path(cache_dir)
        self._validator = jsonschema.Draft202012Validator(schema)
        self._lock = threading.Lock()
        self.stats = {
            "hits": 0,
            "misses": 0,
            "writes": 0,
            "invalid": 0,
        }

    def path_for(self, key):
        if key.is_definition:
            name = config.CACHE_DEFINITION_FILENAME.format(oid=key.oid, version=key.version_label)
        else:
            filter_segment = ""
            if key.filter_text:
                filter_segment = config.CACHE_FILTER_SEGMENT.format(digest=filter_digest(key.filter_text))
            name = config.CACHE_PAGE_FILENAME.format(
                oid=key.oid,
                version=key.version_label,
                filter=filter_segment,
                offset=key.offset,
            )
        return self.cache_dir / name

    def _count(self, stat):
        with self._lock:
            self.stats[stat] += 1

    def get(self, key):
        """Return the cached payload for ``key`` or None on a miss."""
        path = self.path_for(key)
        if not path.exists():
            self._count("misses")
            return None
        try:
            payload = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            return self._discard(path, f"unreadable ({exc})")
        errors = list(self._validator.iter_errors(payload))
        if errors:
            return self._discard(path, errors[0].message)
        self._count("hits")
        return payload

    def _discard(self, path, reason):
        logger.warning("[!] Discarding cache entry %s: %s", path, reason)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        self._count("invalid")
        self._count("misses")
        return None

    def put(self, key, payload):
        path = write_json_atomic(self.path_for(key), payload)
        self._count("writes")
        return path
