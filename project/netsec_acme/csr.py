import logging

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from netsec_acme.errors import EncodingError
from netsec_acme.jws import b64url_decode
from netsec_acme.jws import b64url_encode
from netsec_acme.jws import curve_params

logger = logging.getLogger(__name__)

# The ACME server only looks at the subjectAltName extension, so the subject
# is a fixed placeholder.
PLACEHOLDER_COMMON_NAME = "netsec-acme"


def create_b64url_csr(key: ec.EllipticCurvePrivateKey, domains: list[str]) -> str:
    """Create a CSR from the private key and domains specified. Return the
    base64url encoding of the DER format bytes. Multiple domains can be specified.

    Parameters
    ----------
    key : ec.EllipticCurvePrivateKey
        The certificate private key. Must not be the account key (RFC 8555
        Section 11.1).
    domains : list[str]
        The domains to request a certificate for. All of them, including the
        first, are listed as subjectAltNames in the given order.

    Returns
    -------
    str
        The base64url encoding of the DER encoding of the CSR.

    Raises
    ------
    EncodingError
        When the domain list is empty or the CSR could not be signed.
    """
    if len(domains) == 0:
        raise EncodingError("A zero-length domain list was passed to create_b64url_csr")

    params = curve_params(key.curve)
    try:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(
                x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, PLACEHOLDER_COMMON_NAME)])
            )
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                critical=False,
            )
            .sign(key, params.hash_algorithm())
        )
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Could not build the CSR for {domains}: {e}") from e

    logger.debug(
        "Generated CSR. PEM version:\n" + csr.public_bytes(Encoding.PEM).decode("ASCII")
    )
    return b64url_encode(csr.public_bytes(encoding=Encoding.DER))


def read_csr_domains(b64url_csr: str) -> list[str]:
    """Decode a base64url DER CSR and return the DNS names of its
    subjectAltName extension in order."""
    try:
        csr = x509.load_der_x509_csr(b64url_decode(b64url_csr))
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except (ValueError, x509.ExtensionNotFound) as e:
        raise EncodingError(f"Malformed CSR: {e}") from e
    return san.value.get_values_for_type(x509.DNSName)
