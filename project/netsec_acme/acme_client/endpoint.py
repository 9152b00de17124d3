import json
import logging
from dataclasses import dataclass
from typing import Any
from typing import ClassVar
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec
from requests import RequestException
from requests import Response
from requests import Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from netsec_acme.acme_client.nonce import Nonce
from netsec_acme.config import DEFAULT_REQUEST_TIMEOUT
from netsec_acme.config import USER_AGENT
from netsec_acme.config import ClientConfig
from netsec_acme.errors import TransportError
from netsec_acme.jws import create_flattened_jws
from netsec_acme.jws import create_protected_header

logger = logging.getLogger(__name__)

REPLAY_NONCE = "Replay-Nonce"
LOCATION = "Location"
BAD_NONCE = "urn:ietf:params:acme:error:badNonce"


def create_session(config: ClientConfig) -> Session:
    """Create the HTTP session used for every request to the ACME server.

    Only the unsigned GET and HEAD requests are retried on connection errors.
    A signed POST has already consumed its nonce and must be rebuilt instead.
    """
    session = Session()
    session.verify = config.verify
    session.headers["User-Agent"] = USER_AGENT
    adapter = HTTPAdapter(
        max_retries=Retry(
            total=3,
            backoff_factor=0.5,
            allowed_methods=frozenset({"GET", "HEAD"}),
        )
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def check_response_code(response: Response, *passing_codes: int) -> None:
    """Raise a TransportError with the whole response unless its status code
    is one of `passing_codes`."""
    if response.status_code in passing_codes:
        return

    error = TransportError(
        f"Did not receive good response code from {response.url}",
        status_code=response.status_code,
        headers=response.headers,
        body=response.text,
    )
    logger.error(str(error))
    raise error


def get_required_header(response: Response, name: str) -> str:
    """Extract a header from the response, raising a TransportError if it is
    absent."""
    value = response.headers.get(name)
    if value is not None:
        return value

    error = TransportError(
        f"No {name} field in the response from {response.url}",
        status_code=response.status_code,
        headers=response.headers,
        body=response.text,
    )
    logger.error(str(error))
    raise error


def send_request(
    session: Session, method: str, url: str, timeout: float, **kwargs: Any
) -> Response:
    """Send a request, turning connection failures, timeouts and TLS errors
    into a TransportError without a status code."""
    try:
        return session.request(method, url, timeout=timeout, **kwargs)
    except RequestException as e:
        error = TransportError(f"{method} {url} failed: {e}")
        logger.error(str(error))
        raise error from e


def _is_bad_nonce(response: Response) -> bool:
    if response.status_code != 400:
        return False
    try:
        return response.json().get("type") == BAD_NONCE
    except ValueError:
        return False


@dataclass
class Endpoint:
    url: str
    method: ClassVar[str] = "POST"
    # Every request except newAccount (and revocation signed with the
    # certificate key) identifies the account through the "kid" field.
    requires_kid: ClassVar[bool] = True

    def fetch(
        self,
        session: Session,
        expected_codes: tuple[int, ...] = (200,),
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> Response:
        """Send an unsigned request. Only used for the directory and newNonce."""
        logger.debug(f"Fetching {self.method} {self.url}")
        response = send_request(session, self.method, self.url, timeout)
        check_response_code(response, *expected_codes)
        return response

    def retrieve(
        self,
        session: Session,
        key: ec.EllipticCurvePrivateKey,
        nonce: Nonce,
        kid: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
        expected_codes: tuple[int, ...] = (200,),
        retry_bad_nonce: bool = True,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> tuple[Response, Nonce]:
        """Sign `payload` and POST it to this endpoint.

        Parameters
        ----------
        session : Session
            The HTTP session to send the request with.
        key : ec.EllipticCurvePrivateKey
            The key to sign the request with.
        nonce : Nonce
            The current nonce. It is consumed by this call.
        kid : Optional[str]
            The account URL. When None, the public key is embedded as "jwk".
        payload : Optional[dict[str, Any]]
            The JSON payload. None sends a POST-as-GET.
        expected_codes : tuple[int, ...]
            The status codes accepted as success.
        retry_bad_nonce : bool
            Whether to re-sign and resend once with the replacement nonce when
            the server answers with a badNonce error.
        timeout : float
            Seconds to wait for the server to connect and to answer.

        Returns
        -------
        tuple[Response, Nonce]
            The response and the nonce to use for the next request.

        Raises
        ------
        TransportError
            When the server could not be reached, the status code is
            unexpected or the Replay-Nonce is missing.
        """
        if self.requires_kid and kid is None:
            raise RuntimeError(f"{type(self).__name__} requires the kid to be passed in")

        protected_header = create_protected_header(
            key=key, nonce=nonce.consume(), url=self.url, kid=kid
        )
        post_data = create_flattened_jws(
            key=key, protected_header=protected_header, payload=payload
        )
        logger.debug(f"Retrieving {self.method} {self.url}")
        logger.debug(f"protected_header = {json.dumps(protected_header)}, payload = {payload}")

        response = send_request(
            session,
            self.method,
            self.url,
            timeout,
            headers={"Content-Type": "application/jose+json"},
            data=post_data,
        )

        if retry_bad_nonce and _is_bad_nonce(response):
            # The server hands out a fresh nonce with every error, so one
            # retry is enough to recover from a nonce that expired server-side.
            logger.warning(f"badNonce response from {self.url}, retrying once")
            return self.retrieve(
                session,
                key,
                Nonce(get_required_header(response, REPLAY_NONCE)),
                kid,
                payload,
                expected_codes,
                retry_bad_nonce=False,
                timeout=timeout,
            )

        check_response_code(response, *expected_codes)
        next_nonce = Nonce(get_required_header(response, REPLAY_NONCE))
        return (response, next_nonce)
