import unittest

import requests

from stubs import FakeResponse, FakeSession, valueset
from vsac.errors import UploadError
from vsac.upload import ValueSetUploader, build_transaction_bundle

BASE = "http://hapi.test/fhir"


class BundleTests(unittest.TestCase):
    def test_transaction_bundle_shape(self) -> None:
        bundle = build_transaction_bundle([valueset("1.2"), valueset("1.3")])
        self.assertEqual(bundle["resourceType"], "Bundle")
        self.assertEqual(bundle["type"], "transaction")
        self.assertEqual([entry["resource"]["id"] for entry in bundle["entry"]], ["1.2", "1.3"])
        self.assertTrue(all(entry["request"] == {"method": "POST", "url": "ValueSet"} for entry in bundle["entry"]))

    def test_bundle_is_one_request(self) -> None:
        session = FakeSession([FakeResponse(200, {"resourceType": "Bundle"}, reason="OK")])
        report = ValueSetUploader(BASE, session=session).upload([valueset("1.2"), valueset("1.3")], bundle=True)
        self.assertEqual(len(session.posts), 1)
        url, payload = session.posts[0]
        self.assertEqual(url, BASE)
        self.assertEqual(len(payload["entry"]), 2)
        self.assertEqual(report.succeeded, 2)
        self.assertEqual(report.failed, 0)

    def test_bundle_failure_fails_whole_batch(self) -> None:
        outcome = {"resourceType": "OperationOutcome", "issue": [{"diagnostics": "Transaction rolled back"}]}
        session = FakeSession([FakeResponse(422, outcome)])
        with self.assertRaises(UploadError) as ctx:
            ValueSetUploader(BASE, session=session).upload([valueset("1.2"), valueset("1.3")], bundle=True)
        self.assertIn("422", ctx.exception.message)
        self.assertIn("Transaction rolled back", ctx.exception.message)

    def test_bundle_transport_error(self) -> None:
        session = FakeSession([requests.ConnectionError("refused")])
        with self.assertRaises(UploadError):
            ValueSetUploader(BASE, session=session).upload([valueset("1.2")], bundle=True)


class PerResourceTests(unittest.TestCase):
    def test_continues_past_failures(self) -> None:
        session = FakeSession(
            [
                FakeResponse(201),
                FakeResponse(400, {"issue": [{"diagnostics": "Invalid ValueSet"}]}),
                requests.Timeout("timed out"),
                FakeResponse(201),
            ]
        )
        resources = [valueset(f"1.{i}") for i in range(4)]
        report = ValueSetUploader(BASE + "/", session=session).upload(resources)
        self.assertEqual(len(session.posts), 4)
        self.assertTrue(all(url == f"{BASE}/ValueSet" for url, _payload in session.posts))
        self.assertEqual(report.attempted, 4)
        self.assertEqual(report.succeeded, 2)
        self.assertEqual([label for label, _message in report.failures], ["1.1", "1.2"])
        self.assertIn("Invalid ValueSet", report.failures[0][1])

    def test_dry_run_makes_no_requests(self) -> None:
        session = FakeSession([])
        uploader = ValueSetUploader(BASE, session=session, dry_run=True)
        with self.assertLogs("vsac.upload", level="INFO") as logs:
            each = uploader.upload([valueset("1.2"), valueset("1.3")])
            bundled = uploader.upload([valueset("1.2")], bundle=True)
        self.assertEqual(session.posts, [])
        self.assertTrue(each.dry_run)
        self.assertEqual(each.succeeded, 2)
        self.assertEqual(bundled.succeeded, 1)
        self.assertTrue(any("Would POST" in line for line in logs.output))

    def test_nothing_to_upload(self) -> None:
        session = FakeSession([])
        report = ValueSetUploader(BASE, session=session).upload([], bundle=True)
        self.assertEqual(report.attempted, 0)
        self.assertEqual(session.posts, [])


if __name__ == "__main__":
    unittest.main()
