"""Shared fixtures, including an in-process ACME server the client can be
pointed at through its HTTP session."""
import datetime
import hashlib
import json
from base64 import urlsafe_b64decode
from base64 import urlsafe_b64encode
from pathlib import Path
from typing import Any
from typing import Optional
from urllib.parse import urlparse

import pytest
import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.exceptions import InvalidSignature
from cryptography.x509.oid import NameOID
from requests.structures import CaseInsensitiveDict

from netsec_acme.config import HTTP01
from netsec_acme.config import ClientConfig

BASE_URL = "https://ca"
DIRECTORY_URL = BASE_URL + "/dir"
BAD_NONCE = "urn:ietf:params:acme:error:badNonce"


def b64(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def unb64(data: str) -> bytes:
    return urlsafe_b64decode(data + "=" * (-len(data) % 4))


def make_response(
    status_code: int,
    body: Any = b"",
    headers: Optional[dict[str, str]] = None,
    url: str = "",
) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode("utf-8")
        headers = {"Content-Type": "application/json", **(headers or {})}
    response._content = body
    response.headers = CaseInsensitiveDict(headers or {})
    response.url = url
    response.encoding = "utf-8"
    return response


def verify_flattened_jws(public_key: ec.EllipticCurvePublicKey, body: dict[str, str]) -> None:
    """Raise InvalidSignature unless the raw r||s signature of `body` is valid."""
    size = (public_key.curve.key_size + 7) // 8
    signature = unb64(body["signature"])
    if len(signature) != 2 * size:
        raise InvalidSignature()
    r = int.from_bytes(signature[:size], "big")
    s = int.from_bytes(signature[size:], "big")
    hash_algorithm = {256: hashes.SHA256, 384: hashes.SHA384, 521: hashes.SHA512}[
        public_key.curve.key_size
    ]
    public_key.verify(
        encode_dss_signature(r, s),
        (body["protected"] + "." + body["payload"]).encode("ascii"),
        ec.ECDSA(hash_algorithm()),
    )


def public_key_from_jwk(jwk: dict[str, str]) -> ec.EllipticCurvePublicKey:
    curve = {"P-256": ec.SECP256R1, "P-384": ec.SECP384R1, "P-521": ec.SECP521R1}[jwk["crv"]]
    return ec.EllipticCurvePublicNumbers(
        int.from_bytes(unb64(jwk["x"]), "big"), int.from_bytes(unb64(jwk["y"]), "big"), curve()
    ).public_key()


def reference_thumbprint(jwk: dict[str, str]) -> str:
    canonical = json.dumps(
        {k: jwk[k] for k in ("crv", "kty", "x", "y")}, separators=(",", ":"), sort_keys=True
    )
    return b64(hashlib.sha256(canonical.encode("utf-8")).digest())


def create_ca() -> tuple[ec.EllipticCurvePrivateKey, x509.Certificate]:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Fake ACME Root")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


class FakeACMEServer:
    """A minimal ACME server speaking just enough RFC 8555 for one order.

    It checks every signature and nonce, and validates challenges by reading
    the proofs from the directories the client writes them to, like the real
    server does through the challenge responders. Use it in place of the
    client's requests.Session.
    """

    def __init__(
        self,
        config: ClientConfig,
        tokens: Optional[list[str]] = None,
        challenge_types: tuple[str, ...] = ("http-01", "dns-01"),
        polls_until_valid: int = 2,
        bad_nonce_once: bool = False,
        failures: Optional[dict[str, int]] = None,
    ):
        self.config = config
        self.tokens = tokens or ["abc123"]
        self.challenge_types = challenge_types
        self.polls_until_valid = polls_until_valid
        self.bad_nonce_once = bad_nonce_once
        self.failures = failures or {}

        self.ca_key, self.ca_cert = create_ca()
        self.account_url = BASE_URL + "/acct/1"
        self.order_url = BASE_URL + "/order/1"
        self.account_key: Optional[ec.EllipticCurvePublicKey] = None
        self.account_jwk: Optional[dict[str, str]] = None
        self.account_status = "valid"

        self._nonce_counter = 0
        self.issued_nonces: set[str] = set()
        self.used_nonces: list[str] = []
        self.requests: list[dict[str, Any]] = []

        self.identifiers: list[str] = []
        self.authzs: list[dict[str, Any]] = []
        self.order_status = "pending"
        self.leaf_cert: Optional[x509.Certificate] = None
        self.revoked: list[dict[str, Any]] = []
        self.closed = False

    # Session interface

    def request(self, method: str, url: str, headers=None, data=None, **kwargs):
        path = urlparse(url).path
        if path in self.failures:
            return make_response(
                self.failures[path],
                {"type": "urn:ietf:params:acme:error:serverInternal", "detail": "boom"},
                headers={"Replay-Nonce": self._new_nonce()},
                url=url,
            )
        if method == "GET" and path == "/dir":
            return make_response(200, self.directory(), url=url)
        if method == "HEAD" and path == "/new-nonce":
            return make_response(200, headers={"Replay-Nonce": self._new_nonce()}, url=url)
        if method == "POST":
            return self._handle_post(url, path, headers or {}, data)
        return make_response(405, url=url)

    def close(self):
        self.closed = True

    # Helpers

    def directory(self) -> dict[str, Any]:
        return {
            "newNonce": BASE_URL + "/new-nonce",
            "newAccount": BASE_URL + "/new-acct",
            "newOrder": BASE_URL + "/new-order",
            "revokeCert": BASE_URL + "/revoke-cert",
            "keyChange": BASE_URL + "/key-change",
            "meta": {"termsOfService": BASE_URL + "/tos"},
        }

    def _new_nonce(self) -> str:
        self._nonce_counter += 1
        nonce = f"nonce-{self._nonce_counter}"
        self.issued_nonces.add(nonce)
        return nonce

    def _reply(self, status_code: int, body: Any = b"", headers=None, url: str = ""):
        return make_response(
            status_code, body, headers={"Replay-Nonce": self._new_nonce(), **(headers or {})}, url=url
        )

    def _problem(self, status_code: int, problem_type: str, detail: str, url: str):
        return self._reply(status_code, {"type": problem_type, "detail": detail}, url=url)

    def _handle_post(self, url: str, path: str, headers, data):
        if headers.get("Content-Type") != "application/jose+json":
            return self._problem(415, "urn:ietf:params:acme:error:malformed", "content type", url)

        body = json.loads(data)
        protected = json.loads(unb64(body["protected"]))
        payload = None if body["payload"] == "" else json.loads(unb64(body["payload"]))

        nonce = protected["nonce"]
        if nonce not in self.issued_nonces or self.bad_nonce_once:
            self.bad_nonce_once = False
            return self._problem(400, BAD_NONCE, f"bad nonce {nonce}", url)
        self.issued_nonces.remove(nonce)
        self.used_nonces.append(nonce)

        if protected["url"] != url:
            return self._problem(401, "urn:ietf:params:acme:error:unauthorized", "url", url)

        if "jwk" in protected:
            assert "kid" not in protected
            key = public_key_from_jwk(protected["jwk"])
        elif protected.get("kid") == self.account_url and self.account_key is not None:
            key = self.account_key
        else:
            return self._problem(401, "urn:ietf:params:acme:error:accountDoesNotExist", "kid", url)

        try:
            verify_flattened_jws(key, body)
        except InvalidSignature:
            return self._problem(400, "urn:ietf:params:acme:error:malformed", "signature", url)

        self.requests.append({"url": url, "protected": protected, "payload": payload})

        if path == "/new-acct":
            self.account_key = key
            self.account_jwk = protected["jwk"]
            return self._reply(
                201, self._account_json(), headers={"Location": self.account_url}, url=url
            )
        if path == "/acct/1":
            if payload and payload.get("status") == "deactivated":
                self.account_status = "deactivated"
            return self._reply(200, self._account_json(), url=url)
        if path == "/new-order":
            return self._new_order(payload, url)
        if path == "/order/1":
            assert payload is None
            return self._reply(200, self._order_json(poll=True), url=url)
        if path.startswith("/authz/"):
            assert payload is None
            return self._reply(200, self._authz_json(int(path.split("/")[-1]), poll=True), url=url)
        if path.startswith("/chall/"):
            assert payload == {}
            (_, _, index, challenge_type) = path.split("/")
            return self._confirm_challenge(int(index), challenge_type, url)
        if path == "/finalize/1":
            return self._finalize(payload, url)
        if path == "/cert/1":
            assert payload is None
            return self._reply(
                200,
                self.pem_chain(),
                headers={"Content-Type": "application/pem-certificate-chain"},
                url=url,
            )
        if path == "/revoke-cert":
            return self._revoke(payload, protected, url)
        return self._problem(404, "urn:ietf:params:acme:error:malformed", "not found", url)

    def _account_json(self) -> dict[str, Any]:
        return {"status": self.account_status, "orders": self.account_url + "/orders"}

    def _new_order(self, payload, url):
        self.identifiers = [identifier["value"] for identifier in payload["identifiers"]]
        self.authzs = []
        for i, domain in enumerate(self.identifiers):
            token = self.tokens[i] if i < len(self.tokens) else f"token{i}"
            self.authzs.append(
                {
                    "domain": domain,
                    "status": "pending",
                    "polls": 0,
                    "challenges": {
                        challenge_type: {
                            "token": token if challenge_type == "http-01" else token + "-dns",
                            "status": "pending",
                        }
                        for challenge_type in self.challenge_types
                    },
                }
            )
        return self._reply(201, self._order_json(), headers={"Location": self.order_url}, url=url)

    def _order_json(self, poll: bool = False) -> dict[str, Any]:
        if self.order_status == "pending" and all(a["status"] == "valid" for a in self.authzs):
            self.order_status = "ready"
        if any(a["status"] == "invalid" for a in self.authzs):
            self.order_status = "invalid"
        order = {
            "status": self.order_status,
            "identifiers": [{"type": "dns", "value": d} for d in self.identifiers],
            "authorizations": [BASE_URL + f"/authz/{i}" for i in range(len(self.authzs))],
            "finalize": BASE_URL + "/finalize/1",
        }
        if self.order_status == "valid":
            order["certificate"] = BASE_URL + "/cert/1"
        if poll and self.order_status == "processing":
            # Issuance takes exactly one more poll
            self.order_status = "valid"
        return order

    def _authz_json(self, index: int, poll: bool = False) -> dict[str, Any]:
        authz = self.authzs[index]
        if poll and authz["status"] == "processing":
            authz["polls"] += 1
            if authz["polls"] >= self.polls_until_valid:
                authz["status"] = "valid"
        return {
            "identifier": {"type": "dns", "value": authz["domain"]},
            "status": "pending" if authz["status"] == "processing" else authz["status"],
            "challenges": [
                {
                    "type": challenge_type,
                    "url": BASE_URL + f"/chall/{index}/{challenge_type}",
                    "token": challenge["token"],
                    "status": challenge["status"],
                }
                for challenge_type, challenge in authz["challenges"].items()
            ],
        }

    def expected_key_authorization(self, token: str) -> str:
        return token + "." + reference_thumbprint(self.account_jwk)

    def _probe(self, domain: str, challenge_type: str, token: str) -> bool:
        key_authorization = self.expected_key_authorization(token)
        if challenge_type == "http-01":
            path = Path(self.config.http01_root) / ".well-known" / "acme-challenge" / token
            return path.is_file() and path.read_text() == key_authorization

        digest = b64(hashlib.sha256(key_authorization.encode("ascii")).digest())
        challenge_dir = Path(self.config.dns01_root).joinpath(
            *reversed(domain.split("."))
        ) / "_acme-challenge"
        return challenge_dir.is_dir() and any(
            p.read_text() == digest for p in challenge_dir.iterdir() if p.is_file()
        )

    def _confirm_challenge(self, index: int, challenge_type: str, url: str):
        authz = self.authzs[index]
        challenge = authz["challenges"][challenge_type]
        if self._probe(authz["domain"], challenge_type, challenge["token"]):
            challenge["status"] = "processing"
            authz["status"] = "processing"
        else:
            challenge["status"] = "invalid"
            authz["status"] = "invalid"
        return self._reply(
            200,
            {
                "type": challenge_type,
                "url": url,
                "token": challenge["token"],
                "status": challenge["status"],
            },
            url=url,
        )

    def _finalize(self, payload, url):
        if self.order_status != "ready":
            return self._problem(403, "urn:ietf:params:acme:error:orderNotReady", "not ready", url)
        csr = x509.load_der_x509_csr(unb64(payload["csr"]))
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        if san.value.get_values_for_type(x509.DNSName) != self.identifiers:
            return self._problem(400, "urn:ietf:params:acme:error:badCSR", "names", url)

        now = datetime.datetime.now(datetime.timezone.utc)
        self.leaf_cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([]))
            .issuer_name(self.ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(san.value, critical=True)
            .sign(self.ca_key, hashes.SHA256())
        )
        self.order_status = "processing"
        return self._reply(200, self._order_json(), url=url)

    def pem_chain(self) -> bytes:
        return self.leaf_cert.public_bytes(serialization.Encoding.PEM) + self.ca_cert.public_bytes(
            serialization.Encoding.PEM
        )

    def _revoke(self, payload, protected, url):
        der = unb64(payload["certificate"])
        if self.leaf_cert is None or der != self.leaf_cert.public_bytes(serialization.Encoding.DER):
            return self._problem(404, "urn:ietf:params:acme:error:malformed", "unknown cert", url)
        self.revoked.append({"payload": payload, "signed_with_jwk": "jwk" in protected})
        return self._reply(200, url=url)


@pytest.fixture()
def config(tmp_path: Path) -> ClientConfig:
    return ClientConfig(
        directory_url=DIRECTORY_URL,
        challenge_type=HTTP01,
        resources_dir=tmp_path / "resources",
        max_validation_retries=5,
        validation_delay=0,
        verify=False,
    )


@pytest.fixture()
def account_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())
