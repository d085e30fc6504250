from pathlib import Path

from . import config
from .utils import write_json_atomic

OUTPUT_MODES = ("definition", "expanded")


def valueset_path(out_dir, oid, version, mode):
    """Deterministic output location for one ValueSet resource."""
    if mode not in OUTPUT_MODES:
        raise ValueError(f"Unsupported output mode: {mode}")
    # Version labels are free text upstream; keep them to a single path segment.
    safe_version = str(version or config.UNKNOWN_VERSION).replace("/", "_").replace("\\", "_")
    name = config.OUTPUT_FILENAME.format(oid=oid, version=safe_version, mode=mode)
    return Path(out_dir) / name


def write_valueset_file(out_dir, oid, version, resource, mode):
    """Write (or overwrite) the resource as pretty-printed JSON and return its path."""
    return write_json_atomic(valueset_path(out_dir, oid, version, mode), resource)
