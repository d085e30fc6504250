import json
import os
import stat
import tempfile
import unittest
from pathlib import Path

import requests

from stubs import FakeResponse
from vsac.caching import PageCache
from vsac.errors import InvalidIdentifier, RetryExhausted
from vsac.models import CacheKey
from vsac.output import valueset_path, write_valueset_file
from vsac.utils import (
    derive_version,
    describe_error,
    normalize_oid,
    operation_outcome_message,
    write_json_atomic,
)

OID = "2.16.840.1.113883.3.464.1003.110.12.1001"


class NormalizeOidTests(unittest.TestCase):
    def test_bare_oid(self) -> None:
        self.assertEqual(normalize_oid(OID), OID)

    def test_urn_oid(self) -> None:
        self.assertEqual(normalize_oid(f"urn:oid:{OID}"), OID)

    def test_canonical_url(self) -> None:
        self.assertEqual(normalize_oid(f"http://cts.nlm.nih.gov/fhir/ValueSet/{OID}"), OID)

    def test_first_match_wins(self) -> None:
        self.assertEqual(normalize_oid("vs 1.2.3 then 4.5.6"), "1.2.3")

    def test_no_dot_is_invalid(self) -> None:
        with self.assertRaises(InvalidIdentifier) as ctx:
            normalize_oid("ValueSet/12345")
        self.assertEqual(ctx.exception.code, "INVALID_IDENTIFIER")

    def test_empty_is_invalid(self) -> None:
        with self.assertRaises(InvalidIdentifier):
            normalize_oid("")


class DeriveVersionTests(unittest.TestCase):
    def test_prefers_version(self) -> None:
        self.assertEqual(derive_version({"version": "20240101", "expansion": {"identifier": "x"}}), "20240101")

    def test_falls_back_to_expansion_identifier(self) -> None:
        self.assertEqual(derive_version({"expansion": {"identifier": "urn:uuid:1"}}), "urn:uuid:1")

    def test_none_when_missing(self) -> None:
        self.assertIsNone(derive_version({"resourceType": "ValueSet"}))


class ErrorMessageTests(unittest.TestCase):
    def test_operation_outcome_diagnostics_joined(self) -> None:
        outcome = {"issue": [{"diagnostics": "first"}, {"severity": "error"}, {"diagnostics": "second"}]}
        self.assertEqual(operation_outcome_message(outcome), "first; second")

    def test_describe_http_error_without_message(self) -> None:
        response = FakeResponse(400, {"issue": [{"diagnostics": "bad version"}]})
        self.assertEqual(describe_error(requests.HTTPError(response=response)), "bad version")

    def test_describe_vsac_error_uses_message(self) -> None:
        exc = RetryExhausted("GET /ValueSet/1.2", 3, None)
        self.assertEqual(describe_error(exc), "Giving up on GET /ValueSet/1.2 after 3 attempt(s)")


class FileWriteTests(unittest.TestCase):
    def test_atomic_write_leaves_only_target(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "nested" / "page.json"
            write_json_atomic(target, {"a": 1})
            self.assertEqual(json.loads(target.read_text(encoding="utf-8")), {"a": 1})
            self.assertEqual([p.name for p in target.parent.iterdir()], ["page.json"])

    def test_written_files_follow_umask(self) -> None:
        previous = os.umask(0o022)
        try:
            with tempfile.TemporaryDirectory() as tmp:
                output = write_valueset_file(Path(tmp) / "out", OID, "20240101", {"v": 1}, "expanded")
                cache = PageCache(Path(tmp) / "cache")
                cache.put(CacheKey(OID, None, 0), {"resourceType": "ValueSet", "id": OID})
                cached = cache.path_for(CacheKey(OID, None, 0))
                self.assertEqual(stat.S_IMODE(output.stat().st_mode), 0o644)
                self.assertEqual(stat.S_IMODE(cached.stat().st_mode), 0o644)
        finally:
            os.umask(previous)

    def test_output_path_and_overwrite(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = valueset_path(tmp, OID, "20240101", "expanded")
            self.assertEqual(path.name, f"ValueSet-{OID}-20240101-expanded.json")
            write_valueset_file(tmp, OID, "20240101", {"v": 1}, "expanded")
            write_valueset_file(tmp, OID, "20240101", {"v": 2}, "expanded")
            self.assertEqual(json.loads(path.read_text(encoding="utf-8")), {"v": 2})

    def test_output_path_defaults_unknown_version(self) -> None:
        self.assertEqual(valueset_path("out", "1.2", None, "definition").name, "ValueSet-1.2-unknown-definition.json")

    def test_output_mode_rejected(self) -> None:
        with self.assertRaises(ValueError):
            valueset_path("out", "1.2", "v", "expansion")


if __name__ == "__main__":
    unittest.main()
