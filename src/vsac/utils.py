import hashlib
import json
import os
import threading
from pathlib import Path

import requests

from . import config
from .errors import InvalidIdentifier, VsacError


def normalize_oid(value):
    """Extract the dotted-numeric OID from a bare OID, urn:oid: form, or canonical URL."""
    if not isinstance(value, str):
        raise InvalidIdentifier(str(value))
    match = config.OID_PATTERN.search(value)
    if not match:
        raise InvalidIdentifier(value)
    return match.group(0)


def derive_version(resource):
    """Return the resource version, falling back to the expansion identifier."""
    if not isinstance(resource, dict):
        return None
    version = resource.get("version")
    if version:
        return str(version)
    expansion = resource.get("expansion") or {}
    identifier = expansion.get("identifier")
    return str(identifier) if identifier else None


def filter_digest(filter_text):
    """Short stable digest of a $expand filter, used in cache filenames."""
    digest = hashlib.sha1(filter_text.encode("utf-8")).hexdigest()
    return digest[: config.CACHE_FILTER_DIGEST_CHARS]


def operation_outcome_message(payload):
    """Join the diagnostics of a FHIR OperationOutcome; empty string otherwise."""
    if not isinstance(payload, dict):
        return ""
    issues = payload.get("issue") or []
    messages = [issue.get("diagnostics") for issue in issues if isinstance(issue, dict)]
    return "; ".join(message for message in messages if message)


def response_message(response):
    """Best-effort readable detail for an HTTP error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    message = operation_outcome_message(payload)
    if message:
        return message
    return getattr(response, "reason", None) or ""


def describe_error(exc):
    """Render a job error the way it is logged and recorded."""
    if isinstance(exc, VsacError):
        return exc.message
    if isinstance(exc, requests.HTTPError) and not str(exc) and exc.response is not None:
        return response_message(exc.response)
    return str(exc) or exc.__class__.__name__


def read_json(path):
    """Read JSON from disk and return the decoded payload."""
    with open(Path(path), "r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json_atomic(path, payload):
    """Write JSON through a temp file in the same directory and an atomic rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # Unique per process and thread so concurrent writers never share a temp file.
    temp_path = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
            fh.write("\n")
        os.replace(temp_path, path)
    except BaseException:
        if temp_path.exists():
            temp_path.unlink()
        raise
    return path
