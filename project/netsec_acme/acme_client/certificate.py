from dataclasses import dataclass
from typing import ClassVar

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from netsec_acme.acme_client.endpoint import Endpoint


@dataclass
class RevokeCertEndpoint(Endpoint):
    # RFC 8555 Section 7.6 also accepts requests signed by the certificate key
    # itself, which carry the "jwk" instead of the account "kid".
    requires_kid: ClassVar[bool] = False


@dataclass
class GetCertificateEndpoint(Endpoint):
    pass


@dataclass
class CertificateBundle:
    # Leaf first, as returned by the ACME server
    chain: list[x509.Certificate]
    key: ec.EllipticCurvePrivateKey
    pem_chain: bytes

    @property
    def leaf(self) -> x509.Certificate:
        return self.chain[0]
