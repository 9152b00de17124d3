"""Exceptions raised by the ACME client.

Every failure in an issuance run surfaces as one of the four kinds below. The
orchestrator tags the exception with the pipeline stage that was running when
it was raised, so that the CLI can report exactly where the run stopped.
"""
from typing import Mapping
from typing import Optional


class ACMEError(Exception):
    stage: Optional[str] = None


class TransportError(ACMEError):
    """An unexpected status code, a missing required header or unexpected
    content on a protocol exchange with the ACME server. `status_code` is
    None when there is no single response to blame, e.g. the server could
    not be reached at all."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: str = "",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.body = body

    def __str__(self) -> str:
        if self.status_code is None:
            return f"{self.args[0]}\n{self.body}" if self.body else self.args[0]
        headers = "\n".join(f"{k}: {v}" for k, v in self.headers.items())
        return (
            f"{self.args[0]} (status {self.status_code})\n"
            f"Response headers:\n{headers}\n"
            f"Response payload:\n{self.body}"
        )


class ValidationTimeoutError(ACMEError):
    """An authorization or order never reached the required status."""

    def __init__(self, resource: str, required_status: str, last_status: Optional[str]):
        super().__init__(
            f"{resource} never transitioned to '{required_status}', "
            f"last observed status was '{last_status}'"
        )
        self.resource = resource
        self.required_status = required_status
        self.last_status = last_status


class EncodingError(ACMEError):
    """Malformed key material, unsupported curve or a CSR that could not be
    built. Always a local configuration bug."""


class FilesystemError(ACMEError):
    """A challenge proof, keystore or certificate file could not be written
    or read."""
