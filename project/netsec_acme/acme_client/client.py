import functools
import logging
from enum import Enum
from typing import Any
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from requests import Response
from requests import Session

from netsec_acme.acme_client.account import Account
from netsec_acme.acme_client.account import AccountEndpoint
from netsec_acme.acme_client.account import AccountStub
from netsec_acme.acme_client.authorization import Authorization
from netsec_acme.acme_client.certificate import CertificateBundle
from netsec_acme.acme_client.challenge import Challenge
from netsec_acme.acme_client.challenge import ChallengeResponseEndpoint
from netsec_acme.acme_client.directory import Directory
from netsec_acme.acme_client.directory import DirectoryEndpoint
from netsec_acme.acme_client.endpoint import LOCATION
from netsec_acme.acme_client.endpoint import REPLAY_NONCE
from netsec_acme.acme_client.endpoint import Endpoint
from netsec_acme.acme_client.endpoint import create_session
from netsec_acme.acme_client.endpoint import get_required_header
from netsec_acme.acme_client.executors import create_executor
from netsec_acme.acme_client.keystore import load_leaf_certificate
from netsec_acme.acme_client.keystore import parse_pem_chain
from netsec_acme.acme_client.keystore import store_certificate_bundle
from netsec_acme.acme_client.nonce import Nonce
from netsec_acme.acme_client.order import GetOrderEndpoint
from netsec_acme.acme_client.order import Order
from netsec_acme.acme_client.order import OrderStub
from netsec_acme.acme_client.poller import poll_until_status
from netsec_acme.config import ClientConfig
from netsec_acme.csr import create_b64url_csr
from netsec_acme.csr import read_csr_domains
from netsec_acme.errors import ACMEError
from netsec_acme.errors import EncodingError
from netsec_acme.errors import TransportError
from netsec_acme.errors import ValidationTimeoutError
from netsec_acme.jws import b64url_encode

logger = logging.getLogger(__name__)

SUCCESS_CODES = tuple(range(200, 300))


class ClientState(Enum):
    START = 0
    DIRECTORY_FETCHED = 1
    NONCE_ACQUIRED = 2
    ACCOUNT_CREATED = 3
    ORDER_PLACED = 4
    AUTHORIZATIONS_RETRIEVED = 5
    CHALLENGES_FULFILLED = 6
    CHALLENGES_CONFIRMED = 7
    AUTHORIZATIONS_AND_ORDER_VALIDATED = 8
    ORDER_FINALIZED = 9
    CERTIFICATE_DOWNLOADED = 10
    CERTIFICATE_REVOKED = 11


def _transition(source: ClientState, target: ClientState):
    """Only allow the decorated step to run from `source`, and move the client
    to `target` once it succeeds. Failures are tagged with the stage they
    happened in and propagate unchanged; there is no resuming a failed run."""

    def decorator(method):
        @functools.wraps(method)
        def wrapper(self: "ACMEClient", *args, **kwargs):
            if self.state is not source:
                raise RuntimeError(
                    f"{method.__name__} can only run in state {source.name}, "
                    f"the client is in state {self.state.name}"
                )
            try:
                result = method(self, *args, **kwargs)
            except ACMEError as e:
                if e.stage is None:
                    e.stage = target.name
                raise
            self.state = target
            logger.info(f"Client state is now {target.name}")
            return result

        return wrapper

    return decorator


class ACMEClient:
    config: ClientConfig
    session: Session
    state: ClientState
    account_key: ec.EllipticCurvePrivateKey
    certificate_key: ec.EllipticCurvePrivateKey
    directory: Optional[Directory]
    nonce: Optional[Nonce]
    account: Optional[Account]
    order_endpoint: Optional[GetOrderEndpoint]
    order: Optional[Order]
    authorizations: list[Authorization]
    respond_urls: list[ChallengeResponseEndpoint]
    bundle: Optional[CertificateBundle]

    def __init__(self, config: ClientConfig, session: Optional[Session] = None):
        """Generate the key pairs for one issuance run. Nothing is sent to the
        ACME server until the first step is called.

        Parameters
        ----------
        config : ClientConfig
            The directory URL, challenge type, file locations and retry budget.
        session : Optional[Session]
            The HTTP session to talk to the ACME server with. A new one is
            created from the config when omitted.
        """
        self.config = config
        self.session = session if session is not None else create_session(config)
        self.executor = create_executor(config)
        self.state = ClientState.START

        self.account_key = ec.generate_private_key(config.curve)
        # Generate another pair for the certificate signing request. As per RFC
        # 8555 Section 11.1 this keypair MUST be different to the account keys.
        self.certificate_key = ec.generate_private_key(config.curve)

        self.directory = None
        self.nonce = None
        self.account = None
        self.order_endpoint = None
        self.order = None
        self.authorizations = []
        self.respond_urls = []
        self.bundle = None

    def __enter__(self) -> "ACMEClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def run(self, domains: list[str], revoke: bool = False) -> CertificateBundle:
        """Run the whole issuance pipeline for `domains`, optionally revoking
        the certificate right after it was stored.

        Raises
        ------
        ACMEError
            When any step fails. Its `stage` names the step.
        """
        try:
            self.retrieve_directory()
            self.retrieve_nonce()
            self.create_account()
            self.place_order(domains)
            self.retrieve_authorizations()
            self.fulfil_challenges()
            self.confirm_challenges()
            self.validate_authorizations_and_order()
            self.finalise_order()
            bundle = self.download_certificate()
            if revoke:
                self.revoke_certificate()
        except ACMEError as e:
            logger.error(f"Issuance failed in stage {e.stage}: {e}")
            raise
        return bundle

    @_transition(ClientState.START, ClientState.DIRECTORY_FETCHED)
    def retrieve_directory(self) -> Directory:
        response = DirectoryEndpoint(self.config.directory_url).fetch(
            self.session, timeout=self.config.request_timeout
        )
        self.directory = Directory.from_json(self._json(response))
        logger.info(f"Retrieved directory: {response.text}")
        return self.directory

    @_transition(ClientState.DIRECTORY_FETCHED, ClientState.NONCE_ACQUIRED)
    def retrieve_nonce(self) -> None:
        response = self.directory.new_nonce_endpoint.fetch(
            self.session, expected_codes=(200, 204), timeout=self.config.request_timeout
        )
        self.nonce = Nonce(get_required_header(response, REPLAY_NONCE))
        logger.info(f"Retrieved nonce {self.nonce}")

    @_transition(ClientState.NONCE_ACQUIRED, ClientState.ACCOUNT_CREATED)
    def create_account(self) -> Account:
        """Create an account on the ACME server by requesting to the newAccount
        endpoint in the directory. The request is the only one to carry the
        account public key as "jwk"; all later ones refer to the account URL.

        Returns
        -------
        Account
            The Account resource as currently stored on the server after creation.
        """
        response = self._retrieve(
            self.directory.new_account_endpoint,
            payload=AccountStub(tos_agreed=True).to_json(),
            expected_codes=(200, 201),
            use_jwk=True,
        )
        # RFC specifies that the Location header points to the account endpoint
        account_url = get_required_header(response, LOCATION)
        self.account = Account.from_json(account_url, self._json(response))
        logger.info(f"Account created, located at {account_url}")
        return self.account

    @_transition(ClientState.ACCOUNT_CREATED, ClientState.ORDER_PLACED)
    def place_order(self, domains: list[str]) -> Order:
        """Create an order on the ACME server for the specified domains.

        Parameters
        ----------
        domains : list[str]
            List of domains (dns identifiers) to request the certificate for.
            Duplicates are dropped, the order is kept.

        Returns
        -------
        Order
            The Order resource as stored on the ACME server.

        Raises
        ------
        EncodingError
            When no domain is given.
        """
        domains = list(dict.fromkeys(domains))
        if not domains:
            raise EncodingError("At least one domain is required to place an order")

        response = self._retrieve(
            self.directory.new_order_endpoint,
            payload=OrderStub.for_domains(domains).to_json(),
            # RFC Section 7.4 specifies it has to return 201 on success
            expected_codes=(201,),
        )
        self.order_endpoint = GetOrderEndpoint(get_required_header(response, LOCATION))
        self.order = Order.from_json(self._json(response))
        logger.info(f"Order placed at {self.order_endpoint.url}: {self.order}")
        return self.order

    @_transition(ClientState.ORDER_PLACED, ClientState.AUTHORIZATIONS_RETRIEVED)
    def retrieve_authorizations(self) -> list[Authorization]:
        self.authorizations = [
            Authorization.from_json(self._post_as_get(endpoint))
            for endpoint in self.order.authorization_urls
        ]
        logger.debug(f"authorizations = {self.authorizations}")
        return self.authorizations

    @_transition(ClientState.AUTHORIZATIONS_RETRIEVED, ClientState.CHALLENGES_FULFILLED)
    def fulfil_challenges(self) -> list[ChallengeResponseEndpoint]:
        self.respond_urls = self.executor.execute(
            self.authorizations, self.account_key.public_key()
        )
        return self.respond_urls

    @_transition(ClientState.CHALLENGES_FULFILLED, ClientState.CHALLENGES_CONFIRMED)
    def confirm_challenges(self) -> None:
        """Request the ACME Server to validate every fulfilled challenge. Does
        not wait for the actual validation itself, see
        validate_authorizations_and_order.

        Raises
        ------
        TransportError
            When the server fails to accept the challenge response.
        ValidationTimeoutError
            When the challenge was immediately rejected with status=invalid.
        """
        for endpoint in self.respond_urls:
            # RFC Section 7.5.1: the client responds with the empty object
            response = self._retrieve(endpoint, payload={})
            updated_chal = Challenge.from_json(self._json(response))

            # Just in case, we check if the challenge was immediately rejected.
            if updated_chal.status == "invalid":
                logger.error(
                    f"Server immediately invalidated the challenge at {endpoint.url}: "
                    f"{updated_chal.error}"
                )
                raise ValidationTimeoutError(endpoint.url, "valid", updated_chal.status)
            logger.info(f"Confirmed challenge {endpoint.url}, status {updated_chal.status}")

    @_transition(
        ClientState.CHALLENGES_CONFIRMED, ClientState.AUTHORIZATIONS_AND_ORDER_VALIDATED
    )
    def validate_authorizations_and_order(self) -> Order:
        """Poll every authorization until it is valid, then poll the order
        until it is ready for finalization.

        Raises
        ------
        ValidationTimeoutError
            When an authorization or the order never reached the status, or
            became invalid.
        """
        self.authorizations = [
            Authorization.from_json(self._poll(endpoint, "valid"))
            for endpoint in self.order.authorization_urls
        ]
        self.order = Order.from_json(self._poll(self.order_endpoint, "ready"))
        return self.order

    @_transition(ClientState.AUTHORIZATIONS_AND_ORDER_VALIDATED, ClientState.ORDER_FINALIZED)
    def finalise_order(self) -> Order:
        """Send a CSR for the order's identifiers to the finalize URL, then
        poll the order until the certificate has been issued.

        Returns
        -------
        Order
            The valid order, carrying the certificate URL.
        """
        b64url_csr = create_b64url_csr(key=self.certificate_key, domains=self.order.domains)
        logger.debug(f"CSR subjectAltNames: {read_csr_domains(b64url_csr)}")

        response = self._retrieve(self.order.finalize, payload={"csr": b64url_csr})
        self.order = Order.from_json(self._json(response))
        logger.info(f"Order finalized, status {self.order.status}")

        if self.order.status != "valid":
            self.order = Order.from_json(self._poll(self.order_endpoint, "valid"))

        if self.order.certificate is None:
            raise TransportError(
                "The order is valid and yet it doesn't have a certificate",
                status_code=response.status_code,
                headers=response.headers,
                body=str(self.order),
            )
        return self.order

    @_transition(ClientState.ORDER_FINALIZED, ClientState.CERTIFICATE_DOWNLOADED)
    def download_certificate(self) -> CertificateBundle:
        """Download the certificate chain and store the keystore, the PEM
        chain and the PEM key for the certificate server."""
        response = self._retrieve(self.order.certificate)
        chain = parse_pem_chain(response.content)
        self.bundle = CertificateBundle(
            chain=chain, key=self.certificate_key, pem_chain=response.content
        )
        store_certificate_bundle(self.bundle, self.config)
        logger.info(f"Certificate for {self.order.domains} downloaded and stored")
        return self.bundle

    @_transition(ClientState.CERTIFICATE_DOWNLOADED, ClientState.CERTIFICATE_REVOKED)
    def revoke_certificate(
        self, reason: Optional[int] = None, use_certificate_key: bool = False
    ) -> None:
        """Revoke the certificate stored in the keystore.

        Parameters
        ----------
        reason : Optional[int]
            The RFC 5280 revocation reason code. Omitted when None.
        use_certificate_key : bool
            Sign the request with the certificate key and its "jwk" instead of
            the account key and "kid" (RFC 8555 Section 7.6).

        Raises
        ------
        TransportError
            When the server fails to revoke the certificate.
        """
        cert = load_leaf_certificate(self.config.keystore_path, self.config.keystore_password)
        payload: dict[str, Any] = {
            "certificate": b64url_encode(cert.public_bytes(encoding=serialization.Encoding.DER))
        }
        if reason is not None:
            payload["reason"] = reason

        if use_certificate_key:
            self._retrieve(
                self.directory.revoke_cert_endpoint,
                payload=payload,
                expected_codes=SUCCESS_CODES,
                key=self.certificate_key,
                use_jwk=True,
            )
        else:
            self._retrieve(
                self.directory.revoke_cert_endpoint,
                payload=payload,
                expected_codes=SUCCESS_CODES,
            )
        logger.info(f"Revoked certificate with serial {cert.serial_number:x}")

    def deactivate_account(self) -> Account:
        """Deactivate the account used by this client, to avoid polluting the
        account database of the ACME server.

        Raises
        ------
        TransportError
            When the server fails to deactivate the account.
        """
        if self.account is None:
            raise RuntimeError("No account to deactivate")

        response = self._retrieve(
            AccountEndpoint(self.account.url),
            payload=AccountStub(status="deactivated").to_json(),
        )
        self.account = Account.from_json(self.account.url, self._json(response))
        logger.info(f"Account {self.account.url} is now {self.account.status}")
        return self.account

    def _retrieve(
        self,
        endpoint: Endpoint,
        payload: Optional[dict[str, Any]] = None,
        expected_codes: tuple[int, ...] = (200,),
        key: Optional[ec.EllipticCurvePrivateKey] = None,
        use_jwk: bool = False,
    ) -> Response:
        """Send a signed request, consuming the current nonce and keeping the
        replacement for the next request. Signs with the account key and its
        URL as "kid" unless told otherwise."""
        kid = None if use_jwk else self.account.url
        (response, self.nonce) = endpoint.retrieve(
            session=self.session,
            key=key if key is not None else self.account_key,
            nonce=self.nonce,
            kid=kid,
            payload=payload,
            expected_codes=expected_codes,
            timeout=self.config.request_timeout,
        )
        return response

    def _post_as_get(self, endpoint: Endpoint) -> dict[str, Any]:
        return self._json(self._retrieve(endpoint))

    def _poll(self, endpoint: Endpoint, status: str) -> dict[str, Any]:
        return poll_until_status(
            retrieve=lambda: self._post_as_get(endpoint),
            resource=endpoint.url,
            status=status,
            max_retries=self.config.max_validation_retries,
            delay=self.config.validation_delay,
            fail_statuses=("invalid",),
        )

    @staticmethod
    def _json(response: Response) -> dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"Response from {response.url} is not JSON",
                status_code=response.status_code,
                headers=response.headers,
                body=response.text,
            ) from e
