import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from netsec_acme.acme_client.certificate import CertificateBundle
from netsec_acme.acme_client.executors import write_file_atomically
from netsec_acme.config import ClientConfig
from netsec_acme.errors import EncodingError
from netsec_acme.errors import FilesystemError

logger = logging.getLogger(__name__)


def parse_pem_chain(pem_chain: bytes) -> list[x509.Certificate]:
    """Parse the application/pem-certificate-chain body returned by the ACME
    server into the list of certificates, leaf first."""
    try:
        chain = x509.load_pem_x509_certificates(pem_chain)
    except ValueError as e:
        raise EncodingError(f"Could not parse the certificate chain: {e}") from e
    logger.debug(f"Parsed certificate chain of length {len(chain)}")
    return chain


def _write_all(files: list[tuple[Path, bytes, int]]) -> None:
    # Either every file is in place afterwards, or none of them is
    written: list[Path] = []
    try:
        for (path, data, mode) in files:
            write_file_atomically(path, data, mode)
            written.append(path)
            logger.info(f"Written {len(data)} bytes to {path}")
    except FilesystemError:
        for path in written:
            path.unlink(missing_ok=True)
        raise


def store_certificate_bundle(bundle: CertificateBundle, config: ClientConfig) -> None:
    """Persist the keystore, the PEM chain and the PEM private key under the
    HTTPS root, where the certificate server picks them up.

    Everything is serialized before the first file is written, and the files
    already written are removed again when a later one fails, so a failure
    never leaves a partial set of files behind. The keystore and the key are
    only readable by the owner.

    Parameters
    ----------
    bundle : CertificateBundle
        The downloaded chain together with the certificate key.
    config : ClientConfig
        Provides the file locations, keystore alias and password.

    Raises
    ------
    EncodingError
        When the keystore could not be serialized.
    FilesystemError
        When a file could not be written.
    """
    try:
        keystore = pkcs12.serialize_key_and_certificates(
            name=config.keystore_alias.encode("UTF-8"),
            key=bundle.key,
            cert=bundle.leaf,
            cas=bundle.chain[1:] or None,
            encryption_algorithm=serialization.BestAvailableEncryption(
                config.keystore_password
            ),
        )
        key_pem = bundle.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Could not build the keystore: {e}") from e

    _write_all(
        [
            (config.keystore_path, keystore, 0o600),
            # Unencrypted, readable by the owner only
            (config.cert_key_path, key_pem, 0o600),
            (config.cert_chain_path, bundle.pem_chain, 0o644),
        ]
    )


def load_leaf_certificate(keystore_path: Path, password: bytes) -> x509.Certificate:
    """Read a keystore written by store_certificate_bundle and return the
    certificate bound to its key entry."""
    try:
        data = Path(keystore_path).read_bytes()
    except OSError as e:
        raise FilesystemError(f"Could not read {keystore_path}: {e}") from e

    try:
        (_, cert, _) = pkcs12.load_key_and_certificates(data, password)
    except ValueError as e:
        raise EncodingError(f"Could not load keystore {keystore_path}: {e}") from e

    if cert is None:
        raise EncodingError(f"Keystore {keystore_path} holds no certificate")
    return cert
