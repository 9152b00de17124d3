from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Union

from cryptography.hazmat.primitives.asymmetric import ec

HTTP01 = "http-01"
DNS01 = "dns-01"

# Map the CLI arguments to the RFC-compatible challenge names
CHALLENGE_TYPES = {"http01": HTTP01, "dns01": DNS01}

USER_AGENT = "netsec-acme/1.0.0"

DNS_SERVER_PORT = 10053
HTTP_CHALLENGE_SERVER_PORT = 5002
HTTPS_SERVER_PORT = 5001
SHUTDOWN_SERVER_PORT = 5003

# Seconds to wait for the ACME server to connect and to answer
DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass
class ClientConfig:
    directory_url: str
    challenge_type: str = HTTP01

    # Filesystem locations shared with the challenge responders and the
    # certificate server.
    resources_dir: Path = Path("resources")
    keystore_filename: str = "keystore.p12"
    cert_chain_filename: str = "cert_chain.pem"
    cert_key_filename: str = "cert_key.pem"
    keystore_alias: str = "acme-cert"
    keystore_password: bytes = field(default=b"changeit", repr=False)

    # RFC 7518: ES256 -> ECDSA P-256 curve with SHA-256
    curve: ec.EllipticCurve = field(default_factory=ec.SECP256R1)

    max_validation_retries: int = 10
    validation_delay: float = 2.0
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Either a path to the CA bundle trusted for the ACME server or a boolean
    # passed straight to requests.
    verify: Union[str, bool] = "./pebble.minica.pem"

    def __post_init__(self):
        self.resources_dir = Path(self.resources_dir)
        if self.challenge_type not in (HTTP01, DNS01):
            raise ValueError(f"Unsupported challenge type {self.challenge_type}")

    @property
    def http01_root(self) -> Path:
        return self.resources_dir / "http01"

    @property
    def dns01_root(self) -> Path:
        return self.resources_dir / "dns01"

    @property
    def https_root(self) -> Path:
        return self.resources_dir / "https"

    @property
    def keystore_path(self) -> Path:
        return self.https_root / self.keystore_filename

    @property
    def cert_chain_path(self) -> Path:
        return self.https_root / self.cert_chain_filename

    @property
    def cert_key_path(self) -> Path:
        return self.https_root / self.cert_key_filename
