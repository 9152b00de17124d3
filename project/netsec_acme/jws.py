import json
import logging
from base64 import urlsafe_b64decode
from base64 import urlsafe_b64encode
from dataclasses import dataclass
from typing import Any
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.utils import int_to_bytes

from netsec_acme.errors import EncodingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurveParams:
    # JWK "crv" value (RFC 7518 Section 6.2.1.1)
    crv: str
    # JWS "alg" value (RFC 7518 Section 3.4)
    alg: str
    hash_algorithm: type[hashes.HashAlgorithm]
    curve: type[ec.EllipticCurve]

    @property
    def coordinate_size(self) -> int:
        return (self.curve.key_size + 7) // 8


SUPPORTED_CURVES = {
    "secp256r1": CurveParams("P-256", "ES256", hashes.SHA256, ec.SECP256R1),
    "secp384r1": CurveParams("P-384", "ES384", hashes.SHA384, ec.SECP384R1),
    "secp521r1": CurveParams("P-521", "ES512", hashes.SHA512, ec.SECP521R1),
}


def b64url_encode(data: bytes) -> str:
    return urlsafe_b64encode(data).strip(b"=").decode("ASCII")


def b64url_decode(data: str) -> bytes:
    return urlsafe_b64decode(data + "=" * (-len(data) % 4))


def curve_params(curve: ec.EllipticCurve) -> CurveParams:
    try:
        return SUPPORTED_CURVES[curve.name]
    except KeyError:
        raise EncodingError(f"Unsupported elliptic curve {curve.name}") from None


def _params_by_crv(crv: str) -> CurveParams:
    for params in SUPPORTED_CURVES.values():
        if params.crv == crv:
            return params
    raise EncodingError(f"Unsupported JWK curve {crv}")


def normalize_coordinate(raw: bytes, size: int) -> bytes:
    """Bring a big-endian unsigned coordinate to exactly `size` bytes.

    Encoders that emit a sign byte produce one byte too many, and encoders
    that emit the minimal representation produce too few whenever the top
    byte happens to be zero. Both break the JWK thumbprint.

    Parameters
    ----------
    raw : bytes
        Big-endian coordinate bytes of arbitrary length.
    size : int
        The field size of the curve in bytes.

    Returns
    -------
    bytes
        The coordinate, left-padded with zeroes or with surplus leading
        zeroes removed.

    Raises
    ------
    EncodingError
        When the value does not fit in `size` bytes.
    """
    stripped = raw.lstrip(b"\x00")
    if len(stripped) > size:
        raise EncodingError(
            f"Coordinate of {len(stripped)} bytes does not fit in {size} bytes"
        )
    return stripped.rjust(size, b"\x00")


def create_jwk(public_key: ec.EllipticCurvePublicKey) -> dict[str, str]:
    params = curve_params(public_key.curve)
    numbers = public_key.public_numbers()
    return {
        # Only the minimum required keys should be here, and in lexicographic
        # order. This is irrelevant for the newAccount ACME server registration,
        # but becomes vital for the JWK Thumbprint generation when responding to
        # challenges, see RFC 8555 Section 8.1 and RFC 7638 Section 3.2.
        "crv": params.crv,
        "kty": "EC",
        "x": b64url_encode(
            normalize_coordinate(int_to_bytes(numbers.x), params.coordinate_size)
        ),
        "y": b64url_encode(
            normalize_coordinate(int_to_bytes(numbers.y), params.coordinate_size)
        ),
    }


def jwk_to_public_key(jwk: dict[str, str]) -> ec.EllipticCurvePublicKey:
    if jwk.get("kty") != "EC":
        raise EncodingError(f"Unsupported JWK key type {jwk.get('kty')}")
    params = _params_by_crv(jwk["crv"])
    try:
        x = normalize_coordinate(b64url_decode(jwk["x"]), params.coordinate_size)
        y = normalize_coordinate(b64url_decode(jwk["y"]), params.coordinate_size)
        return ec.EllipticCurvePublicNumbers(
            int.from_bytes(x, "big"), int.from_bytes(y, "big"), params.curve()
        ).public_key()
    except (KeyError, ValueError) as e:
        raise EncodingError(f"Malformed JWK: {e}") from e


def create_jwk_thumbprint(public_key: ec.EllipticCurvePublicKey) -> str:
    return jwk_thumbprint(create_jwk(public_key))


def jwk_thumbprint(jwk: dict[str, str]) -> str:
    thumbprint = hashes.Hash(hashes.SHA256())
    thumbprint.update(
        json.dumps(
            # RFC 7638 Section 3.2: only the required members, sorted
            {member: jwk[member] for member in ("crv", "kty", "x", "y")},
            # Prevent whitespace between items and between key/value, which the
            # default will add. JWK Thumbprint should be computed with zero
            # whitespace as per RFC 7638 Section 3.
            separators=(",", ":"),
        ).encode("UTF-8")
    )
    return b64url_encode(thumbprint.finalize())


def create_key_authorization(token: str, public_key: ec.EllipticCurvePublicKey) -> str:
    # RFC 8555 Section 8.1
    return token + "." + create_jwk_thumbprint(public_key)


def create_dns01_txt_value(key_authorization: str) -> str:
    # RFC 8555 Section 8.4
    digest = hashes.Hash(hashes.SHA256())
    digest.update(key_authorization.encode("UTF-8"))
    return b64url_encode(digest.finalize())


def create_protected_header(
    key: ec.EllipticCurvePrivateKey,
    nonce: str,
    url: str,
    kid: Optional[str] = None,
) -> dict[str, Any]:
    """Build the JWS protected header of RFC 8555 Section 6.2. The "jwk" field
    is only used when there is no account URL to put in "kid"."""
    protected_header: dict[str, Any] = {
        "alg": curve_params(key.curve).alg,
        "nonce": nonce,
        "url": url,
    }
    if kid is not None:
        protected_header["kid"] = kid
    else:
        protected_header["jwk"] = create_jwk(key.public_key())
    return protected_header


def create_flattened_jws(
    key: ec.EllipticCurvePrivateKey,
    protected_header: dict[str, Any],
    payload: Optional[dict[str, Any]],
) -> str:
    params = curve_params(key.curve)

    # A POST-as-GET request carries the empty string as payload (RFC 8555
    # Section 6.3), which is not the same as the empty object.
    payload_bytes = (
        b"" if payload is None else json.dumps(payload, separators=(",", ":")).encode("UTF-8")
    )
    b64url_payload = b64url_encode(payload_bytes)
    b64url_protected_header = b64url_encode(
        json.dumps(protected_header, separators=(",", ":")).encode("UTF-8")
    )

    # The key.sign() method on EllipticCurvePrivateKey returns a DSS format,
    # whereas we want the pure concatenation of r and s bytes (RFC 7518
    # Section 3.4)
    (r, s) = decode_dss_signature(
        key.sign(
            (b64url_protected_header + "." + b64url_payload).encode("ASCII"),
            signature_algorithm=ec.ECDSA(params.hash_algorithm()),
        )
    )
    jws_signature = int_to_bytes(r, params.coordinate_size) + int_to_bytes(
        s, params.coordinate_size
    )

    return json.dumps(
        {
            "protected": b64url_protected_header,
            "payload": b64url_payload,
            "signature": b64url_encode(jws_signature),
        }
    )
