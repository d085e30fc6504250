import logging
from dataclasses import dataclass, field

import requests

from . import config
from .errors import UploadError
from .utils import response_message

logger = logging.getLogger(__name__)


@dataclass
class UploadReport:
    attempted: int = 0
    succeeded: int = 0
    failures: list = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed(self):
        return len(self.failures)


def build_transaction_bundle(resources):
    """Wrap ValueSets in a FHIR transaction Bundle, one POST entry per resource."""
    return {
        "resourceType": "Bundle",
        "type": "transaction",
        "entry": [
            {
                "resource": resource,
                "request": {"method": "POST", "url": "ValueSet"},
            }
            for resource in resources
        ],
    }


def _resource_label(resource):
    return resource.get("id") or resource.get("url") or "<unnamed>"


class ValueSetUploader:
    """Republishes fetched ValueSets to a FHIR server, individually or as one transaction."""

    def __init__(self, base_url, session=None, dry_run=False, timeout=config.API_TIMEOUT):
        self.base_url = base_url
        self.session = session or requests.Session()
        self.dry_run = dry_run
        self.timeout = timeout

    @property
    def valueset_url(self):
        return self.base_url.rstrip("/") + "/ValueSet"

    def upload(self, resources, bundle=False):
        resources = list(resources)
        report = UploadReport(attempted=len(resources), dry_run=self.dry_run)
        if not resources:
            logger.info("[-] Nothing to upload.")
            return report
        if bundle:
            self._post_bundle(resources, report)
        else:
            self._post_each(resources, report)
        return report

    def _post(self, url, payload):
        return self.session.post(url, json=payload, headers=config.UPLOAD_HEADERS, timeout=self.timeout)

    def _post_bundle(self, resources, report):
        bundle = build_transaction_bundle(resources)
        if self.dry_run:
            logger.info("[Dry run] Would POST bundle of %s ValueSet(s) to %s", len(resources), self.base_url)
            report.succeeded = len(resources)
            return
        try:
            response = self._post(self.base_url, bundle)
        except requests.RequestException as exc:
            raise UploadError(f"Bundle POST to {self.base_url} failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            detail = response_message(response)
            raise UploadError(
                f"Bundle POST to {self.base_url} failed: HTTP {response.status_code} {detail}".rstrip(),
                {"status": response.status_code},
            )
        logger.info("[+] Bundle POST response: %s %s", response.status_code, getattr(response, "reason", "") or "")
        report.succeeded = len(resources)

    def _post_each(self, resources, report):
        url = self.valueset_url
        for resource in resources:
            label = _resource_label(resource)
            if self.dry_run:
                logger.info("[Dry run] Would POST ValueSet %s to %s", label, url)
                report.succeeded += 1
                continue
            try:
                response = self._post(url, resource)
            except requests.RequestException as exc:
                logger.error("[!] ValueSet %s POST failed: %s", label, exc)
                report.failures.append((label, str(exc)))
                continue
            if 200 <= response.status_code < 300:
                logger.info("[+] ValueSet %s POST response: %s", label, response.status_code)
                report.succeeded += 1
                continue
            message = f"HTTP {response.status_code} {response_message(response)}".rstrip()
            logger.error("[!] ValueSet %s POST failed: %s", label, message)
            report.failures.append((label, message))
