from __future__ import annotations

from typing import Any, Optional


class VsacError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidIdentifier(VsacError):
    def __init__(self, value: str) -> None:
        super().__init__("INVALID_IDENTIFIER", f"Could not extract OID from '{value}'", {"value": value})
        self.value = value


class RetryExhausted(VsacError):
    """Raised once every attempt at a transient-failing request has been used."""

    def __init__(self, description: str, attempts: int, last_error: Optional[BaseException]) -> None:
        message = f"Giving up on {description} after {attempts} attempt(s)"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__("RETRY_EXHAUSTED", message, {"attempts": attempts})
        self.attempts = attempts
        self.last_error = last_error


class MissingCredential(VsacError):
    def __init__(self, env_var: str) -> None:
        super().__init__(
            "MISSING_CREDENTIAL",
            f"Missing UMLS API key. Set --umls-key or {env_var}.",
            {"env_var": env_var},
        )


class UploadError(VsacError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("UPLOAD_FAILED", message, details)


class EmptyPageSequence(AssertionError):
    """Merging was asked to combine zero expansion pages."""
